"""Data models for the local store."""

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional

OPERATIONS = ("create", "update", "delete")


def new_id() -> str:
    """Globally unique record id."""
    return uuid.uuid4().hex


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Record:
    """Mixin: convert between dataclass and the stored dict shape."""

    @classmethod
    def from_record(cls, record: dict):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in record.items() if k in names})

    def to_record(self) -> dict:
        return asdict(self)


@dataclass
class Product(_Record):
    id: str = field(default_factory=new_id)
    business_id: str = ""
    name: str = ""
    sku: str = ""
    category: str = ""
    price: float = 0.0
    stock: int = 0
    description: str = ""
    supplier_id: Optional[str] = None
    image_url: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class Transaction(_Record):
    id: str = field(default_factory=new_id)
    business_id: str = ""
    product_id: str = ""
    quantity: int = 0
    total_amount: float = 0.0
    payment_method: str = "Cash"  # Cash, GCash, PayMaya, QRPH, Card
    user_id: str = ""
    status: str = "Completed"  # Completed, Processing, Refunded
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class SystemUser(_Record):
    id: str = field(default_factory=new_id)
    business_id: str = ""
    name: str = ""
    email: str = ""
    role: str = "Cashier"  # Admin, Cashier, Promoter
    is_active: bool = True
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class Supplier(_Record):
    id: str = field(default_factory=new_id)
    business_id: str = ""
    name: str = ""
    contact_person: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class OutboundMutation:
    """A local change not yet confirmed by the remote system."""

    collection: str = ""
    record_id: str = ""
    operation: str = "update"  # create, update, delete
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    attempts: int = 0
    last_error: str = ""
    failed: bool = False  # fatal remote rejection, parked for inspection
    seq: Optional[int] = field(default=None, repr=False)

    @property
    def group_key(self) -> tuple[str, str]:
        """Mutations sharing this key must be replayed in FIFO order."""
        return (self.collection, self.record_id)
