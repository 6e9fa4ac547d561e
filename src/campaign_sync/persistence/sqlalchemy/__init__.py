from .db import build_engine, build_session_factory, create_schema, drop_schema
from .store import SQLAlchemyDocumentStore, SQLAlchemyLocalStore
from .uow import SQLAlchemyUnitOfWork

__all__ = [
    "build_engine",
    "build_session_factory",
    "create_schema",
    "drop_schema",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemyDocumentStore",
    "SQLAlchemyLocalStore",
]
