"""Local point-in-time backups of the ledger's snapshot collections."""

from __future__ import annotations

import logging

from stockbook.constants import KEY_BACKUPS
from stockbook.ledger import Ledger
from stockbook.models import Backup, RemoteSnapshot, clone_users, now_str

logger = logging.getLogger(__name__)


class BackupManager:
    """Append-only backup history stored alongside the ledger.

    - ``add_local_backup()`` captures clones, so later live mutations never
      reach a stored backup.
    - ``restore()`` is a full overwrite of products, sales, feedback,
      faults and users; meta and cloud references are left alone.
    """

    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def backups(self) -> list[Backup]:
        return self._ledger.backups

    def add_local_backup(self) -> Backup:
        ledger = self._ledger
        backup = Backup(
            id=ledger.next_id(),
            date=now_str(),
            products=[p.clone() for p in ledger.products],
            sales=[s.clone() for s in ledger.sales],
            feedback=[f.clone() for f in ledger.feedback],
            faults=[f.clone() for f in ledger.faults],
            users=clone_users(ledger.users),
        )
        with ledger.transaction(KEY_BACKUPS):
            ledger.backups.append(backup)
        logger.info(
            "Local backup %s captured (%d products, %d sales).",
            backup.id, len(backup.products), len(backup.sales),
        )
        return backup

    def get_last_local_backup(self) -> Backup | None:
        return self._ledger.backups[-1] if self._ledger.backups else None

    def delete_local_backup(self, index: int) -> None:
        """Remove by position. Out-of-range indices are ignored."""
        if not 0 <= index < len(self._ledger.backups):
            return
        with self._ledger.transaction(KEY_BACKUPS):
            del self._ledger.backups[index]

    def restore(self, backup: Backup) -> None:
        restored = backup.clone()
        self._ledger.replace_collections(
            products=restored.products,
            sales=restored.sales,
            feedback=restored.feedback,
            faults=restored.faults,
            users=restored.users,
        )
        logger.info("Restored local backup %s from %s.", backup.id, backup.date)

    def restore_last(self) -> bool:
        """Restore the newest backup. Returns False if there is none."""
        backup = self.get_last_local_backup()
        if backup is None:
            return False
        self.restore(backup)
        return True

    def restore_snapshot(self, snapshot: RemoteSnapshot) -> None:
        """Apply a downloaded remote snapshot through the same overwrite path.

        A snapshot without ``users`` keeps the current accounts.
        """
        self._ledger.replace_collections(
            products=[p.clone() for p in snapshot.products],
            sales=[s.clone() for s in snapshot.sales],
            feedback=[f.clone() for f in snapshot.feedback],
            faults=[f.clone() for f in snapshot.faults],
            users=clone_users(snapshot.users) if snapshot.users is not None else None,
        )
        logger.info("Restored remote snapshot dated %s.", snapshot.date)
