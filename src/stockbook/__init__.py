"""Stockbook — product stock and sales ledger with backup and remote sync."""

__version__ = "0.1.0"

from stockbook.backups import BackupManager
from stockbook.config import StockbookConfig
from stockbook.constants import DEFAULT_LOW_STOCK_THRESHOLD, SYNC_INTERVAL_SECS
from stockbook.ledger import Ledger, LedgerStorageError, ValidationReport
from stockbook.models import (
    Backup,
    CloudBackupReference,
    Fault,
    Feedback,
    Product,
    RemoteSnapshot,
    Sale,
)
from stockbook.scheduler import SyncScheduler
from stockbook.session import StockbookSession, build_session
from stockbook.store import JsonFileStore, MemoryStore, PersistentStore, StorageError
from stockbook.sync_client import (
    RemoteSyncClient,
    SyncAuthError,
    SyncConnectionError,
    SyncError,
    SyncNotFoundError,
    SyncResponseError,
    SyncResult,
    SyncServerError,
    SyncTimeoutError,
)

__all__ = [
    "Backup",
    "BackupManager",
    "CloudBackupReference",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "Fault",
    "Feedback",
    "JsonFileStore",
    "Ledger",
    "LedgerStorageError",
    "MemoryStore",
    "PersistentStore",
    "Product",
    "RemoteSnapshot",
    "RemoteSyncClient",
    "SYNC_INTERVAL_SECS",
    "Sale",
    "StockbookConfig",
    "StockbookSession",
    "StorageError",
    "SyncAuthError",
    "SyncConnectionError",
    "SyncError",
    "SyncNotFoundError",
    "SyncResponseError",
    "SyncResult",
    "SyncScheduler",
    "SyncServerError",
    "SyncTimeoutError",
    "ValidationReport",
    "build_session",
]
