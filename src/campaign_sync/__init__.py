from .core.config import SyncConfig
from .core.scheduling import AsyncioScheduler, ManualScheduler
from .core.session import CampaignSession
from .core.types import Identity, ModerationResult, ProposeResult
from .persistence.sqlalchemy import SQLAlchemyDocumentStore, SQLAlchemyLocalStore

__all__ = [
    "CampaignSession",
    "SyncConfig",
    "AsyncioScheduler",
    "ManualScheduler",
    "Identity",
    "ProposeResult",
    "ModerationResult",
    "SQLAlchemyDocumentStore",
    "SQLAlchemyLocalStore",
]
