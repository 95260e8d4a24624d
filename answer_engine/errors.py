"""
Error taxonomy for the answer engine.

Every failure carries a machine-readable ``kind`` plus a human message so the
caller can decide between retrying and surfacing the problem to the user.
"""

from __future__ import annotations

from typing import Any


class AnswerEngineError(Exception):
    """Base class for all engine failures."""

    kind = 'internal'
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {'error': self.kind, 'message': self.message, 'details': self.details}


class InvalidInputError(AnswerEngineError):
    """Rejected before any external call; no side effects."""

    kind = 'invalid_input'


class EmbeddingError(AnswerEngineError):
    kind = 'embedding_failure'
    retryable = True


class DimensionMismatchError(EmbeddingError):
    """Vectors of different lengths (different models) were compared."""

    kind = 'dimension_mismatch'
    retryable = False


class NotFoundError(AnswerEngineError):
    kind = 'not_found'

    def __init__(self, message: str, resource_type: str | None = None, resource_id: Any = None):
        details: dict[str, Any] = {}
        if resource_type:
            details['resource_type'] = resource_type
        if resource_id is not None:
            details['resource_id'] = str(resource_id)
        super().__init__(message, details)


class ForbiddenError(AnswerEngineError):
    kind = 'forbidden'


class GenerationError(AnswerEngineError):
    """The language model call failed or timed out. Nothing was cached."""

    kind = 'generation_failure'
    retryable = True


class UsageLimitError(AnswerEngineError):
    kind = 'usage_limit'
