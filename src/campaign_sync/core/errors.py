from __future__ import annotations


class CampaignSyncError(Exception):
    pass


class SessionStateError(CampaignSyncError):
    """Operation issued while no session is joined (or after it ended)."""


class SessionNotFoundError(CampaignSyncError):
    pass


class BanishedError(CampaignSyncError):
    pass


class AuthorizationError(CampaignSyncError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class SanitizationError(CampaignSyncError, ValueError):
    pass


class MapActionError(CampaignSyncError, ValueError):
    pass


class PersistenceError(CampaignSyncError):
    pass


class DocumentNotFoundError(PersistenceError):
    pass


class DocumentTooLargeError(PersistenceError):
    def __init__(self, path: str, size: int, limit: int):
        super().__init__(f"document {path} is {size} bytes, limit {limit}")
        self.path = path
        self.size = size
        self.limit = limit
