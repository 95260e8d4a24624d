from __future__ import annotations

import sys

from answer_engine.config import get_settings
from answer_engine.logging_config import setup_logging


def ensure_supported_python() -> None:
    if sys.version_info < (3, 11):
        version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        raise RuntimeError(f'Python 3.11+ is required. Current: {version}')


def bootstrap() -> None:
    ensure_supported_python()
    setup_logging(get_settings().log_level)
