"""Ledger entities: products, sales, faults, feedback, backups.

Pure data model — no I/O. Every entity serializes to the camelCase dict
shape used by the durable store and the remote snapshot payload, and
provides an explicit ``clone()`` so snapshots never share mutable state
with the live ledger.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any

logger = logging.getLogger(__name__)

User = dict[str, Any]


def today_str() -> str:
    return date.today().isoformat()


def now_str() -> str:
    return datetime.now().isoformat(timespec="seconds")


def as_number(value: Any) -> int | float:
    """Normalize a caller-supplied quantity or price to a number.

    Integral values come back as ``int`` so quantities stay whole.
    """
    num = float(value)
    return int(num) if num.is_integer() else num


def clone_users(users: list[User]) -> list[User]:
    """Users are opaque records; copy them wholesale."""
    return copy.deepcopy(users)


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------


@dataclass
class Product:
    """A stocked item. ``qty`` is the on-hand unit count."""

    id: int
    name: str
    category: str
    price: int | float
    qty: int | float
    date_added: str = ""
    extra: dict[str, Any] = field(default_factory=dict)  # fields set by edit patches

    _FIELDS = {
        "id": "id",
        "name": "name",
        "category": "category",
        "price": "price",
        "qty": "qty",
        "dateAdded": "date_added",
        "date_added": "date_added",
    }

    @classmethod
    def normalize_patch(cls, patch: dict[str, Any]) -> dict[str, Any]:
        """Drop ``id`` and coerce ``price``/``qty`` the way ``add_product`` does.

        Raises ``TypeError``/``ValueError`` on a non-numeric price or qty.
        """
        clean = {}
        for key, value in patch.items():
            attr = cls._FIELDS.get(key)
            if attr == "id":
                continue
            if attr in ("price", "qty"):
                value = as_number(value)
            clean[key] = value
        return clean

    def apply_patch(self, patch: dict[str, Any]) -> None:
        """Shallow field overwrite. Unknown keys are kept in ``extra``."""
        for key, value in self.normalize_patch(patch).items():
            attr = self._FIELDS.get(key)
            if attr is None:
                self.extra[key] = value
            else:
                setattr(self, attr, value)

    def clone(self) -> Product:
        return replace(self, extra=copy.deepcopy(self.extra))

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "qty": self.qty,
            "dateAdded": self.date_added,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Product:
        known = {"id", "name", "category", "price", "qty", "dateAdded"}
        return cls(
            id=int(data.get("id", 0)),
            name=str(data.get("name", "")),
            category=str(data.get("category", "")),
            price=as_number(data.get("price", 0)),
            qty=as_number(data.get("qty", 0)),
            date_added=str(data.get("dateAdded", "")),
            extra={k: v for k, v in data.items() if k not in known},
        )


# ---------------------------------------------------------------------------
# Sale
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sale:
    """Immutable sale record.

    ``product_name`` and ``price`` are copied at sale time and are not kept
    in sync with later product edits. ``total`` is fixed at creation.
    """

    id: int
    product_id: int
    product_name: str
    qty: int | float
    price: int | float
    total: int | float
    date: str = ""

    @classmethod
    def create(
        cls, sale_id: int, product: Product, qty: int | float, price: int | float,
    ) -> Sale:
        return cls(
            id=sale_id,
            product_id=product.id,
            product_name=product.name,
            qty=qty,
            price=price,
            total=qty * price,
            date=now_str(),
        )

    def clone(self) -> Sale:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "productId": self.product_id,
            "productName": self.product_name,
            "qty": self.qty,
            "price": self.price,
            "total": self.total,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Sale:
        qty = as_number(data.get("qty", 0))
        price = as_number(data.get("price", 0))
        total = data.get("total")
        return cls(
            id=int(data.get("id", 0)),
            product_id=int(data.get("productId", 0)),
            product_name=str(data.get("productName", "")),
            qty=qty,
            price=price,
            total=as_number(total) if total is not None else qty * price,
            date=str(data.get("date", "")),
        )


# ---------------------------------------------------------------------------
# Fault / Feedback
# ---------------------------------------------------------------------------


@dataclass
class Fault:
    """Maintenance fault report with an optional opaque evidence payload."""

    id: int
    description: str
    image: str | None = None  # opaque to the ledger (e.g. a data URL)
    date: str = ""

    def clone(self) -> Fault:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "image": self.image,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fault:
        return cls(
            id=int(data.get("id", 0)),
            description=str(data.get("description", "")),
            image=data.get("image"),
            date=str(data.get("date", "")),
        )


@dataclass
class Feedback:
    id: int
    type: str
    msg: str
    date: str = ""

    def clone(self) -> Feedback:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "msg": self.msg, "date": self.date}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Feedback:
        return cls(
            id=int(data.get("id", 0)),
            type=str(data.get("type", "")),
            msg=str(data.get("msg", "")),
            date=str(data.get("date", "")),
        )


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


@dataclass
class Backup:
    """Point-in-time copy of the five snapshot collections.

    Never mutated after creation; callers receive clones on restore.
    """

    id: int
    date: str
    products: list[Product] = field(default_factory=list)
    sales: list[Sale] = field(default_factory=list)
    feedback: list[Feedback] = field(default_factory=list)
    faults: list[Fault] = field(default_factory=list)
    users: list[User] = field(default_factory=list)

    def clone(self) -> Backup:
        return Backup(
            id=self.id,
            date=self.date,
            products=[p.clone() for p in self.products],
            sales=[s.clone() for s in self.sales],
            feedback=[f.clone() for f in self.feedback],
            faults=[f.clone() for f in self.faults],
            users=clone_users(self.users),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "products": [p.to_dict() for p in self.products],
            "sales": [s.to_dict() for s in self.sales],
            "feedback": [f.to_dict() for f in self.feedback],
            "faults": [f.to_dict() for f in self.faults],
            "users": clone_users(self.users),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Backup:
        return cls(
            id=int(data.get("id", 0)),
            date=str(data.get("date", "")),
            products=parse_list(data.get("products"), Product.from_dict),
            sales=parse_list(data.get("sales"), Sale.from_dict),
            feedback=parse_list(data.get("feedback"), Feedback.from_dict),
            faults=parse_list(data.get("faults"), Fault.from_dict),
            users=parse_users(data.get("users")),
        )


# ---------------------------------------------------------------------------
# Remote sync records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CloudBackupReference:
    """Local pointer to an uploaded snapshot (does not hold the payload)."""

    date: str
    file: str  # remote object name
    url: str | None = None  # access locator reported by the bucket

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "file": self.file, "url": self.url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CloudBackupReference:
        return cls(
            date=str(data.get("date", "")),
            file=str(data.get("file", "")),
            url=data.get("url"),
        )


@dataclass
class RemoteSnapshot:
    """Canonical uploaded payload.

    ``users`` is optional: ``None`` means the uploader excluded accounts,
    and a restore from this snapshot leaves local users untouched.
    """

    date: str
    products: list[Product] = field(default_factory=list)
    sales: list[Sale] = field(default_factory=list)
    faults: list[Fault] = field(default_factory=list)
    feedback: list[Feedback] = field(default_factory=list)
    users: list[User] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "date": self.date,
            "products": [p.to_dict() for p in self.products],
            "sales": [s.to_dict() for s in self.sales],
            "faults": [f.to_dict() for f in self.faults],
            "feedback": [f.to_dict() for f in self.feedback],
        }
        if self.users is not None:
            data["users"] = clone_users(self.users)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteSnapshot:
        """Strict parse: a restore overwrites everything, so a snapshot with
        any malformed record raises ``ValueError``/``TypeError`` instead of
        silently dropping it.
        """
        raw_users = data.get("users")
        return cls(
            date=str(data.get("date", "")),
            products=parse_list(data.get("products"), Product.from_dict, strict=True),
            sales=parse_list(data.get("sales"), Sale.from_dict, strict=True),
            faults=parse_list(data.get("faults"), Fault.from_dict, strict=True),
            feedback=parse_list(data.get("feedback"), Feedback.from_dict, strict=True),
            users=parse_users(raw_users) if raw_users is not None else None,
        )


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_list(raw: Any, factory: Any, strict: bool = False) -> list[Any]:
    """Build entities from a list of dicts, skipping malformed items.

    With ``strict=True`` a malformed item (or a non-list collection) raises
    instead of being skipped; a missing collection is still empty.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        if strict:
            raise ValueError(f"expected a list of records, got {type(raw).__name__}")
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            if strict:
                raise ValueError(f"malformed record: {entry!r}")
            logger.warning("Skipping malformed record: %r", entry)
            continue
        try:
            items.append(factory(entry))
        except (TypeError, ValueError) as exc:
            if strict:
                raise
            logger.warning("Skipping malformed record %r: %s", entry, exc)
    return items


def parse_users(raw: Any) -> list[User]:
    if not isinstance(raw, list):
        return []
    return [dict(u) for u in raw if isinstance(u, dict)]
