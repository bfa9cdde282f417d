"""Package initializer for `dealforge_lookup`."""

from .orchestrator import LookupFailed, LookupOrchestrator, LookupResult
from .store import LookupCacheStore, StorageUnavailable

__all__ = [
    "LookupCacheStore",
    "LookupFailed",
    "LookupOrchestrator",
    "LookupResult",
    "StorageUnavailable",
]
