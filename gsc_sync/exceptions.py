"""
Error kinds raised by the sync engine.

ConfigurationError aborts a whole campaign sync, ExternalFetchError fails a
single fetch window and PersistenceError fails a single record write.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for sync engine errors"""


class ConfigurationError(SyncError):
    """Campaign cannot be synced as configured (no start date, no linked account)"""

    def __init__(self, message: str, campaign_id: Optional[int] = None):
        super().__init__(message)
        self.campaign_id = campaign_id


class ExternalFetchError(SyncError):
    """Search Console request failed after retries (timeout, auth, quota)"""

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class PersistenceError(SyncError):
    """A single upsert could not be written"""

    def __init__(self, message: str, entity: Optional[str] = None, key: Optional[tuple] = None):
        super().__init__(message)
        self.entity = entity
        self.key = key
