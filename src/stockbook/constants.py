"""Constants shared by the stockbook ledger and its sync machinery."""

DEFAULT_LOW_STOCK_THRESHOLD = 10  # units; products below this are "low stock"
SYNC_INTERVAL_SECS = 90  # periodic remote upload cadence

DEFAULT_STORAGE_BASE_URL = "https://firebasestorage.googleapis.com/v0"
DEFAULT_OBJECT_PREFIX = "backup-"

# Durable store keys
KEY_PRODUCTS = "products"
KEY_SALES = "sales"
KEY_FEEDBACK = "feedback"
KEY_FAULTS = "faults"
KEY_USERS = "users"
KEY_BACKUPS = "backups"
KEY_CLOUD_BACKUPS = "cloud_backups"
KEY_META = "meta"

# Collections captured by backups and remote snapshots
SNAPSHOT_KEYS = (KEY_PRODUCTS, KEY_SALES, KEY_FEEDBACK, KEY_FAULTS, KEY_USERS)

META_LAST_CLOUD_BACKUP = "lastCloudBackup"
