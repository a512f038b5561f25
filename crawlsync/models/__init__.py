from crawlsync.models.sync_run import SyncRun
from crawlsync.models.sync_source import SyncSource

__all__ = [
    "SyncSource",
    "SyncRun",
]
