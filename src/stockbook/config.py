"""Stockbook configuration — plain frozen dataclass, no pydantic.

The host application constructs this from its own settings (env vars,
a settings file, etc.) and passes it to the ledger and sync components.
"""

from dataclasses import dataclass

from stockbook.constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_OBJECT_PREFIX,
    DEFAULT_STORAGE_BASE_URL,
    SYNC_INTERVAL_SECS,
)


@dataclass(frozen=True)
class StockbookConfig:
    bucket: str | None = None
    storage_base_url: str = DEFAULT_STORAGE_BASE_URL
    access_token: str | None = None
    object_prefix: str = DEFAULT_OBJECT_PREFIX
    include_users: bool = True
    sync_interval_secs: float = SYNC_INTERVAL_SECS
    skip_unchanged: bool = False
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    data_dir: str | None = None

    @property
    def sync_enabled(self) -> bool:
        return bool(self.bucket)
