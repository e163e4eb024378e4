"""Authoritative product/sales ledger backed by a PersistentStore.

All mutations are synchronous and commit transactionally: the touched
collections are captured before mutating, then persisted. If the store
rejects the write, the in-memory collections are rolled back and
``LedgerStorageError`` is raised, so memory and disk never diverge.

Domain-rule violations (unknown id, insufficient stock) are reported by
``False``/``None`` return values, never raised.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from stockbook.constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    KEY_BACKUPS,
    KEY_CLOUD_BACKUPS,
    KEY_FAULTS,
    KEY_FEEDBACK,
    KEY_META,
    KEY_PRODUCTS,
    KEY_SALES,
    KEY_USERS,
    META_LAST_CLOUD_BACKUP,
    SNAPSHOT_KEYS,
)
from stockbook.models import (
    Backup,
    CloudBackupReference,
    Fault,
    Feedback,
    Product,
    RemoteSnapshot,
    Sale,
    User,
    as_number,
    clone_users,
    now_str,
    parse_list,
    parse_users,
    today_str,
)
from stockbook.store import PersistentStore, StorageError

logger = logging.getLogger(__name__)


class LedgerStorageError(Exception):
    """A mutation was rejected because it could not be persisted."""


@dataclass
class ValidationReport:
    """Result of a data audit: hard errors and low-stock warnings."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.warnings


class Ledger:
    """In-memory ledger of products, sales, feedback, faults and users.

    Construct one per session and pass it to BackupManager and
    RemoteSyncClient. ``revision`` increases with every committed change
    to the snapshot collections.
    """

    def __init__(
        self,
        store: PersistentStore,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    ) -> None:
        self._store = store
        self.low_stock_threshold = low_stock_threshold
        self.products: list[Product] = self._load_list(KEY_PRODUCTS, Product.from_dict)
        self.sales: list[Sale] = self._load_list(KEY_SALES, Sale.from_dict)
        self.feedback: list[Feedback] = self._load_list(KEY_FEEDBACK, Feedback.from_dict)
        self.faults: list[Fault] = self._load_list(KEY_FAULTS, Fault.from_dict)
        self.users: list[User] = parse_users(self._load_json(KEY_USERS))
        self.backups: list[Backup] = self._load_list(KEY_BACKUPS, Backup.from_dict)
        self.cloud_backups: list[CloudBackupReference] = self._load_list(
            KEY_CLOUD_BACKUPS, CloudBackupReference.from_dict
        )
        meta = self._load_json(KEY_META)
        self.meta: dict[str, Any] = meta if isinstance(meta, dict) else {}
        self._revision = 0
        self._last_id = self._max_known_id()

    # -- loading --------------------------------------------------------------

    def _load_json(self, key: str) -> Any:
        blob = self._store.get(key)
        if blob is None:
            return None
        try:
            return json.loads(blob)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Stored %r is corrupt; starting it empty.", key)
            return None

    def _load_list(self, key: str, factory: Any) -> list[Any]:
        raw = self._load_json(key)
        if raw is not None and not isinstance(raw, list):
            logger.warning("Stored %r is not a list; starting it empty.", key)
        return parse_list(raw, factory)

    def _max_known_id(self) -> int:
        ids = [0]
        for items in (self.products, self.sales, self.feedback, self.faults, self.backups):
            ids.extend(item.id for item in items)
        return max(ids)

    # -- identity -------------------------------------------------------------

    def next_id(self) -> int:
        """Strictly increasing, millisecond-shaped id."""
        self._last_id = max(self._last_id + 1, int(time.time() * 1000))
        return self._last_id

    @property
    def revision(self) -> int:
        return self._revision

    # -- transactions ---------------------------------------------------------

    def _encode(self, key: str) -> str:
        if key == KEY_META:
            return json.dumps(self.meta)
        if key == KEY_USERS:
            return json.dumps(self.users)
        return json.dumps([item.to_dict() for item in getattr(self, key)])

    def _capture(self, key: str) -> Any:
        if key == KEY_META:
            return copy.deepcopy(self.meta)
        if key == KEY_USERS:
            return clone_users(self.users)
        if key == KEY_CLOUD_BACKUPS:
            return list(self.cloud_backups)
        return [item.clone() for item in getattr(self, key)]

    @contextmanager
    def transaction(self, *keys: str) -> Iterator[None]:
        """Mutate the named collections, then persist them as one write.

        Any exception inside the block, or a failed write, restores the
        collections to their state on entry.
        """
        saved = {key: self._capture(key) for key in keys}
        try:
            yield
        except BaseException:
            self._rollback(saved)
            raise

        try:
            self._store.set_many({key: self._encode(key) for key in keys})
        except (StorageError, TypeError, ValueError) as exc:
            self._rollback(saved)
            logger.error("Persisting %s failed; mutation rolled back: %s", keys, exc)
            self._rewrite_quietly(keys)
            raise LedgerStorageError(str(exc)) from exc

        if any(key in SNAPSHOT_KEYS for key in keys):
            self._revision += 1

    def _rollback(self, saved: dict[str, Any]) -> None:
        for key, value in saved.items():
            setattr(self, key, value)

    def _rewrite_quietly(self, keys: tuple[str, ...]) -> None:
        """Put back any entries a partially failed write already replaced."""
        try:
            self._store.set_many({key: self._encode(key) for key in keys})
        except (StorageError, TypeError, ValueError):
            logger.warning("Store still rejecting writes for %s.", keys)

    # -- products -------------------------------------------------------------

    def find_product(self, product_id: int) -> Product | None:
        return next((p for p in self.products if p.id == product_id), None)

    def add_product(
        self, name: str, category: str, price: Any, qty: Any,
    ) -> Product:
        """Create a product. Input validation is the caller's job."""
        product = Product(
            id=self.next_id(),
            name=name,
            category=category,
            price=as_number(price),
            qty=as_number(qty),
            date_added=today_str(),
        )
        with self.transaction(KEY_PRODUCTS):
            self.products.append(product)
        return product

    def edit_product(self, product_id: int, patch: dict[str, Any]) -> bool:
        """Overwrite the patched fields. Returns False if the id is unknown or
        the patch carries a non-numeric price or qty. ``id`` is never patched.
        """
        if self.find_product(product_id) is None:
            logger.warning("edit_product: unknown product %s.", product_id)
            return False
        try:
            patch = Product.normalize_patch(patch)
        except (TypeError, ValueError) as exc:
            logger.warning("edit_product: rejected patch for %s: %s", product_id, exc)
            return False
        with self.transaction(KEY_PRODUCTS):
            self.find_product(product_id).apply_patch(patch)
        return True

    def delete_product(self, product_id: int) -> None:
        # Sales keep their dangling product_id; no cascade.
        with self.transaction(KEY_PRODUCTS):
            self.products = [p for p in self.products if p.id != product_id]

    # -- sales ----------------------------------------------------------------

    def find_sale(self, sale_id: int) -> Sale | None:
        return next((s for s in self.sales if s.id == sale_id), None)

    def add_sale(self, product_id: int, qty: Any, price: Any) -> bool:
        """Sell ``qty`` units. Returns False if unknown or insufficient stock.

        The stock check and the decrement run with no suspension point in
        between.
        """
        qty = as_number(qty)
        price = as_number(price)
        if qty < 0:
            logger.warning("add_sale: negative quantity %s rejected.", qty)
            return False
        product = self.find_product(product_id)
        if product is None:
            logger.warning("add_sale: unknown product %s.", product_id)
            return False
        if product.qty < qty:
            logger.warning(
                "add_sale: insufficient stock for %s (have %s, want %s).",
                product.name, product.qty, qty,
            )
            return False
        with self.transaction(KEY_PRODUCTS, KEY_SALES):
            product = self.find_product(product_id)
            product.qty -= qty
            self.sales.append(Sale.create(self.next_id(), product, qty, price))
        return True

    def delete_sale(self, sale_id: int) -> bool:
        """Remove a sale and return its units to stock if the product exists."""
        sale = self.find_sale(sale_id)
        if sale is None:
            logger.warning("delete_sale: unknown sale %s.", sale_id)
            return False
        with self.transaction(KEY_PRODUCTS, KEY_SALES):
            product = self.find_product(sale.product_id)
            if product is not None:
                product.qty += sale.qty
            self.sales = [s for s in self.sales if s.id != sale_id]
        return True

    # -- queries --------------------------------------------------------------

    def get_total_sales(self) -> int | float:
        return sum(s.total for s in self.sales)

    def _sold_by_name(self) -> dict[str, int | float]:
        counts: dict[str, int | float] = {}
        for sale in self.sales:
            counts[sale.product_name] = counts.get(sale.product_name, 0) + sale.qty
        return counts

    def get_top_product(self) -> str | None:
        """Name with the most units sold; ties go to the first name seen."""
        best: str | None = None
        best_qty: int | float = 0
        for name, qty in self._sold_by_name().items():
            if best is None or qty > best_qty:
                best, best_qty = name, qty
        return best

    def get_top_product_qty(self) -> int | float:
        top = self.get_top_product()
        return self._sold_by_name()[top] if top is not None else 0

    def get_low_stock_products(self, threshold: int | None = None) -> list[Product]:
        limit = self.low_stock_threshold if threshold is None else threshold
        return [p for p in self.products if p.qty < limit]

    def sale_margins(self) -> list[tuple[Sale, int | float]]:
        """Per-sale margin against the product's current price (0 if gone)."""
        margins = []
        for sale in self.sales:
            product = self.find_product(sale.product_id)
            margin = (sale.price - product.price) * sale.qty if product else 0
            margins.append((sale, margin))
        return margins

    def summary(self) -> dict[str, Any]:
        return {
            "total_revenue": self.get_total_sales(),
            "transactions": len(self.sales),
            "products": len(self.products),
            "units_in_stock": sum(p.qty for p in self.products),
            "top_product": self.get_top_product(),
            "top_product_qty": self.get_top_product_qty(),
            "low_stock": len(self.get_low_stock_products()),
        }

    def validate(self) -> ValidationReport:
        """Audit products for negative stock, non-positive prices, low stock."""
        report = ValidationReport()
        for p in self.products:
            if p.qty < 0:
                report.errors.append(f"{p.name}: stock cannot be negative")
            if p.price <= 0:
                report.errors.append(f"{p.name}: price must be greater than 0")
            if p.qty < self.low_stock_threshold:
                report.warnings.append(f"{p.name}: low stock ({p.qty} units)")
        return report

    # -- feedback / faults ----------------------------------------------------

    def add_feedback(self, type: str, msg: str) -> Feedback:
        entry = Feedback(id=self.next_id(), type=type, msg=msg, date=now_str())
        with self.transaction(KEY_FEEDBACK):
            self.feedback.append(entry)
        return entry

    def add_fault(self, description: str, image: str | None = None) -> Fault:
        fault = Fault(
            id=self.next_id(), description=description, image=image, date=now_str(),
        )
        with self.transaction(KEY_FAULTS):
            self.faults.append(fault)
        return fault

    def delete_fault(self, fault_id: int) -> None:
        with self.transaction(KEY_FAULTS):
            self.faults = [f for f in self.faults if f.id != fault_id]

    def clear_faults(self) -> None:
        with self.transaction(KEY_FAULTS):
            self.faults = []

    # -- users / meta ---------------------------------------------------------

    def add_user(self, user: User) -> None:
        with self.transaction(KEY_USERS):
            self.users.append(dict(user))

    def update_users(self, users: list[User]) -> None:
        with self.transaction(KEY_USERS):
            self.users = clone_users(users)

    def set_meta(self, key: str, value: Any) -> None:
        with self.transaction(KEY_META):
            self.meta[key] = value

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self.meta.get(key, default)

    # -- snapshots / cloud references ----------------------------------------

    def snapshot(self, include_users: bool = True) -> RemoteSnapshot:
        """Deep, independent copy of the snapshot collections."""
        return RemoteSnapshot(
            date=now_str(),
            products=[p.clone() for p in self.products],
            sales=[s.clone() for s in self.sales],
            faults=[f.clone() for f in self.faults],
            feedback=[f.clone() for f in self.feedback],
            users=clone_users(self.users) if include_users else None,
        )

    def replace_collections(
        self,
        products: list[Product],
        sales: list[Sale],
        feedback: list[Feedback],
        faults: list[Fault],
        users: list[User] | None,
    ) -> None:
        """Overwrite the snapshot collections in one commit (no merge).

        ``users=None`` leaves accounts untouched. The caller passes copies.
        """
        keys = [KEY_PRODUCTS, KEY_SALES, KEY_FEEDBACK, KEY_FAULTS]
        if users is not None:
            keys.append(KEY_USERS)
        with self.transaction(*keys):
            self.products = products
            self.sales = sales
            self.feedback = feedback
            self.faults = faults
            if users is not None:
                self.users = users
        self._last_id = max(self._last_id, self._max_known_id())

    def record_cloud_backup(self, reference: CloudBackupReference) -> None:
        with self.transaction(KEY_CLOUD_BACKUPS, KEY_META):
            self.cloud_backups.append(reference)
            self.meta[META_LAST_CLOUD_BACKUP] = reference.file

    # -- reset ----------------------------------------------------------------

    def clear_all_data(self) -> None:
        """Empty everything except users (accounts survive resets)."""
        with self.transaction(KEY_PRODUCTS, KEY_SALES, KEY_FEEDBACK, KEY_FAULTS, KEY_BACKUPS):
            self.products = []
            self.sales = []
            self.feedback = []
            self.faults = []
            self.backups = []
