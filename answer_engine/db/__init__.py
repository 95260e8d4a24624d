from answer_engine.db.base import Base
from answer_engine.db.session import create_tables, get_engine, get_session_factory

__all__ = ['Base', 'create_tables', 'get_engine', 'get_session_factory']
