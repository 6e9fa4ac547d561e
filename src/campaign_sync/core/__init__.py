from .chat import build_chat_entry, visible_chat, visible_journal_pages
from .config import SyncConfig
from .coordinator import WriteCoordinator
from .errors import (
    AuthorizationError,
    BanishedError,
    CampaignSyncError,
    DocumentNotFoundError,
    DocumentTooLargeError,
    MapActionError,
    PersistenceError,
    SanitizationError,
    SessionNotFoundError,
    SessionStateError,
)
from .lore import pack_lore, retrieve_context
from .maps import IMMEDIATE_ACTIONS, reduce_map
from .membership import elevated_ids, is_elevated
from .multiplexer import SnapshotMultiplexer
from .normalize import UNSET, sanitize
from .ports import (
    BlobUploadPort,
    DocumentIngestionPort,
    DocumentStorePort,
    IdentityPort,
    LocalStorePort,
    SchedulerPort,
    TextCompletionPort,
)
from .scheduling import AsyncioScheduler, DebounceSlot, ManualScheduler
from .session import CampaignSession
from .state import CampaignView, fold_event, genesis_payload, initial_view
from .types import (
    DELETE_FIELD,
    ArrayRemove,
    ArrayUnion,
    DocumentSnapshot,
    Identity,
    ModerationResult,
    ProposeResult,
    SessionParams,
    SyncEvent,
    WriteOp,
)

__all__ = [
    "CampaignSession",
    "CampaignView",
    "SnapshotMultiplexer",
    "WriteCoordinator",
    "SyncConfig",
    "AsyncioScheduler",
    "ManualScheduler",
    "DebounceSlot",
    "reduce_map",
    "IMMEDIATE_ACTIONS",
    "elevated_ids",
    "is_elevated",
    "fold_event",
    "genesis_payload",
    "initial_view",
    "sanitize",
    "UNSET",
    "build_chat_entry",
    "visible_chat",
    "visible_journal_pages",
    "pack_lore",
    "retrieve_context",
    "DocumentStorePort",
    "LocalStorePort",
    "SchedulerPort",
    "IdentityPort",
    "BlobUploadPort",
    "TextCompletionPort",
    "DocumentIngestionPort",
    "DocumentSnapshot",
    "Identity",
    "SessionParams",
    "SyncEvent",
    "ProposeResult",
    "ModerationResult",
    "WriteOp",
    "ArrayUnion",
    "ArrayRemove",
    "DELETE_FIELD",
    "CampaignSyncError",
    "SessionStateError",
    "SessionNotFoundError",
    "BanishedError",
    "AuthorizationError",
    "SanitizationError",
    "MapActionError",
    "PersistenceError",
    "DocumentNotFoundError",
    "DocumentTooLargeError",
]
