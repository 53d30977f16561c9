from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Index, text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a value read back without an offset (SQLite drops it)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def timestamp_field(**kwargs):
    # A fresh Column per table; SQLAlchemy columns cannot be shared.
    return Field(sa_column=Column(DateTime(timezone=True), nullable=False), **kwargs)


TRANSFER_STATUSES = ("pending", "approved", "rejected", "in_transit", "delivered", "received")
ACTIVE_TRANSFER_STATUSES = ("pending", "approved", "in_transit")


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    is_donor: bool = False
    is_school: bool = False
    is_admin: bool = False
    is_verified: bool = False
    password_hash: str

    organization: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime = timestamp_field(default_factory=utcnow)


class Device(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)

    name: str
    description: str = ""
    device_type: str
    condition: str = "used-good"
    quantity: int = 1
    images: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    specifications: dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: str = "pending"  # pending | approved | rejected | matched | completed

    created_at: datetime = timestamp_field(default_factory=utcnow)
    updated_at: datetime = timestamp_field(default_factory=utcnow)


class Need(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    school_id: int = Field(foreign_key="user.id", index=True)

    device_type: str
    quantity: int = 1
    description: str = ""
    specifications: dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    min_condition: Optional[str] = None
    priority: str = "medium"
    status: str = "pending"  # pending | approved | fulfilled

    created_at: datetime = timestamp_field(default_factory=utcnow)
    updated_at: datetime = timestamp_field(default_factory=utcnow)


_ACTIVE_TRANSFER = text("status IN ('pending', 'approved', 'in_transit')")


class Transfer(SQLModel, table=True):
    # At most one non-terminal transfer per device, enforced by the store as well.
    __table_args__ = (
        Index(
            "uq_transfer_active_device",
            "device_id",
            unique=True,
            sqlite_where=_ACTIVE_TRANSFER,
            postgresql_where=_ACTIVE_TRANSFER,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="device.id")
    donor_id: int = Field(foreign_key="user.id", index=True)
    school_id: int = Field(foreign_key="user.id", index=True)

    message: str = ""
    status: str = "pending"
    notes: Optional[str] = None
    receipt_images: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = timestamp_field(default_factory=utcnow)
    updated_at: datetime = timestamp_field(default_factory=utcnow)


class Voucher(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    transfer_id: int = Field(foreign_key="transfer.id", unique=True)
    token: str = Field(index=True, unique=True)
    status: str = "active"  # active | used | expired
    expires_at: datetime = timestamp_field()

    created_at: datetime = timestamp_field(default_factory=utcnow)
    updated_at: datetime = timestamp_field(default_factory=utcnow)


class DeviceReceipt(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    transfer_id: int = Field(foreign_key="transfer.id", unique=True)
    device_id: int = Field(foreign_key="device.id")
    school_id: int = Field(foreign_key="user.id")

    confirmation_images: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    notes: str = ""
    created_at: datetime = timestamp_field(default_factory=utcnow)


class DeviceHistory(SQLModel, table=True):
    """One chain-of-custody entry: who moved a device to which status, and when."""

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key="device.id", index=True)
    transfer_id: Optional[int] = Field(default=None, foreign_key="transfer.id")
    performed_by: int = Field(foreign_key="user.id")

    status: str
    description: str = ""
    created_at: datetime = timestamp_field(default_factory=utcnow)
