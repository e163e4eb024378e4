"""Wire a ledger, its backups and remote sync from a StockbookConfig."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from stockbook.backups import BackupManager
from stockbook.config import StockbookConfig
from stockbook.ledger import Ledger
from stockbook.scheduler import SyncScheduler
from stockbook.store import JsonFileStore, MemoryStore, PersistentStore
from stockbook.sync_client import RemoteSyncClient

logger = logging.getLogger(__name__)


@dataclass
class StockbookSession:
    """Everything a front end needs for one session.

    The scheduler only runs when a bucket is configured.
    """

    config: StockbookConfig
    ledger: Ledger
    backups: BackupManager
    sync: RemoteSyncClient
    scheduler: SyncScheduler

    async def start(self) -> None:
        if self.config.sync_enabled:
            await self.scheduler.start()
        else:
            logger.info("No bucket configured; remote sync disabled.")

    async def close(self) -> None:
        await self.scheduler.stop(flush=self.config.sync_enabled)
        await self.sync.close()


def build_session(
    config: StockbookConfig, store: PersistentStore | None = None,
) -> StockbookSession:
    """Build a session. Without an explicit store, ``data_dir`` picks one."""
    if store is None:
        store = JsonFileStore(config.data_dir) if config.data_dir else MemoryStore()
    ledger = Ledger(store, low_stock_threshold=config.low_stock_threshold)
    sync = RemoteSyncClient(ledger, config)
    scheduler = SyncScheduler(
        sync,
        interval_secs=config.sync_interval_secs,
        ledger=ledger,
        skip_unchanged=config.skip_unchanged,
    )
    return StockbookSession(
        config=config,
        ledger=ledger,
        backups=BackupManager(ledger),
        sync=sync,
        scheduler=scheduler,
    )
