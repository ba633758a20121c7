import enum
from uuid import UUID
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, Text, UniqueConstraint, BigInteger, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from uuid6 import uuid7
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlmodel import Column, SQLModel, Field, Relationship, String
from shopfront.common.utils import now

# JSONB on postgres, plain JSON elsewhere (sqlite in tests)
JSONDoc = JSON().with_variant(JSONB(), "postgresql")


def public_id_column():
    return Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class HistoryAction(str, enum.Enum):
    INITIALIZE = "initialize"
    INCREASE = "increase"
    DECREASE = "decrease"
    RESERVE = "reserve"
    RELEASE = "release"
    ADJUST = "adjust"


class InventorySource(str, enum.Enum):
    MANUAL = "manual"
    ORDER = "order"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    SYSTEM = "system"


class AddressType(str, enum.Enum):
    SHIPPING = "shipping"
    BILLING = "billing"
    BOTH = "both"


class GuestStatus(str, enum.Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    ABANDONED = "abandoned"


class CheckoutStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class MetricSource(str, enum.Enum):
    CALCULATED = "calculated"
    MANUAL = "manual"
    IMPORTED = "imported"


class MetricStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"

# -----------------------------------------------------------------------------------------------------------------------
# Users and roles

class UserRole(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True,nullable=False)
    role_id: Optional[int] = Field(default=None, foreign_key="role.id", index=True,nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_role_user_id_role_id"),)


class Users(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    username: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    email: str = Field(sa_column=Column(String(320), nullable=False, unique=True))
    first_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    last_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))
    deleted_at: Optional[datetime] = Field(default=None,
        sa_column=Column(DateTime(timezone=True)))

    roles: List["Role"] = Relationship(back_populates="users",link_model=UserRole)


class Role(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(length=64), unique=True, nullable=False))
    description: Optional[str] = None

    users: List["Users"] = Relationship(back_populates="roles",link_model=UserRole)


class Credential(SQLModel, table=True):
    """Password hashes, one row per user."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"),
            index=True, unique=True, nullable=False))
    password_hash: str = Field(sa_column=Column(Text(),nullable=False))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), default=now,nullable=False))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), default=now,nullable=False, onupdate=now))

# -----------------------------------------------------------------------------------------------------------------------
# Catalog

class ProductCategory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(128), unique=True, nullable=False))


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    name: str = Field(sa_column=Column(String(255), nullable=False,unique=True))
    sku: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    price: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))  # minor units
    category_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("productcategory.id", ondelete="SET NULL"), index=True, nullable=True))
    specs: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))
    deleted_at: Optional[datetime] = Field(default=None,
        sa_column=Column(DateTime(timezone=True)))

    inventory: Optional["Inventory"] = Relationship(back_populates="product", sa_relationship_kwargs={"uselist": False})

# -----------------------------------------------------------------------------------------------------------------------
# Inventory ledger

class Inventory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    product_id: int = Field(sa_column=Column(ForeignKey("product.id", ondelete="CASCADE"), unique=True, index=True, nullable=False))
    quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    reserved: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    low_stock_threshold: int = Field(default=10, sa_column=Column(Integer, nullable=False, default=10))
    is_low_stock: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False, index=True))
    last_updated: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_by: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

    product: Optional["Product"] = Relationship(back_populates="inventory")

    __table_args__ = (
        CheckConstraint("reserved >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("reserved <= quantity", name="ck_inventory_reserved_le_quantity"),
        CheckConstraint("low_stock_threshold >= 0", name="ck_inventory_threshold_non_negative"),
    )

    @property
    def available(self) -> int:
        return self.quantity - self.reserved


class StockReservation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    product_id: int = Field(sa_column=Column(ForeignKey("product.id", ondelete="CASCADE"), index=True, nullable=False))
    inventory_id: int = Field(sa_column=Column(ForeignKey("inventory.id", ondelete="CASCADE"), index=True, nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    order_ref: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    customer_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True))
    session_id: Optional[str] = Field(default=None, sa_column=Column(String(128), index=True, nullable=True))
    status: str = Field(default=ReservationStatus.ACTIVE.value, sa_column=Column(String(16), nullable=False, index=True))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    reason: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_reservation_status_expires", "status", "expires_at"),
    )


class InventoryHistory(SQLModel, table=True):
    """Append-only audit row, one per quantity/reserved mutation."""
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    # history outlives the rows it describes
    product_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("product.id", ondelete="SET NULL"), index=True, nullable=True))
    inventory_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("inventory.id", ondelete="SET NULL"), index=True, nullable=True))
    reservation_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("stockreservation.id", ondelete="SET NULL"), nullable=True))
    action: str = Field(sa_column=Column(String(16), nullable=False, index=True))
    quantity_before: int = Field(sa_column=Column(Integer, nullable=False))
    quantity_after: int = Field(sa_column=Column(Integer, nullable=False))
    quantity_changed: int = Field(sa_column=Column(Integer, nullable=False))
    reserved_before: int = Field(sa_column=Column(Integer, nullable=False))
    reserved_after: int = Field(sa_column=Column(Integer, nullable=False))
    reason: str = Field(sa_column=Column(Text(), nullable=False))
    source: str = Field(default=InventorySource.MANUAL.value, sa_column=Column(String(16), nullable=False, index=True))
    order_ref: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    changed_by: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True))
    timestamp: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))

# -----------------------------------------------------------------------------------------------------------------------
# Customers

class Address(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    user_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True))
    session_id: Optional[str] = Field(default=None, sa_column=Column(String(128), index=True, nullable=True))
    type: str = Field(sa_column=Column(String(16), nullable=False, index=True))
    first_name: str = Field(sa_column=Column(String(255), nullable=False))
    last_name: str = Field(sa_column=Column(String(255), nullable=False))
    company: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    address1: str = Field(sa_column=Column(String(255), nullable=False))
    address2: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    city: str = Field(sa_column=Column(String(255), nullable=False))
    state: str = Field(sa_column=Column(String(255), nullable=False))
    postal_code: str = Field(sa_column=Column(String(20), nullable=False))
    country: str = Field(sa_column=Column(String(255), nullable=False))
    phone: str = Field(sa_column=Column(String(20), nullable=False))
    is_default: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))


class Guest(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    session_id: str = Field(sa_column=Column(String(128), unique=True, index=True, nullable=False))
    email: str = Field(sa_column=Column(String(320), nullable=False, index=True))
    first_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    last_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    phone: Optional[str] = Field(default=None, sa_column=Column(String(20), nullable=True))
    cart_ref: str = Field(sa_column=Column(String(128), nullable=False))
    status: str = Field(default=GuestStatus.ACTIVE.value, sa_column=Column(String(16), nullable=False, index=True))
    converted_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    converted_user_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

# -----------------------------------------------------------------------------------------------------------------------
# Tracking and analytics

class UserActivity(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    user_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True))
    activity_type: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    activity_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(1000), nullable=True))
    location: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    device_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    session_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    session_duration: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    success: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    timestamp: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))


class UserBehavior(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    user_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True))
    session_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    behavior_type: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    page_url: Optional[str] = Field(default=None, sa_column=Column(String(2048), nullable=True))
    time_spent: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))  # seconds
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    device_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    location: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    timestamp: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))


class EngagementMetric(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    metric_type: str = Field(sa_column=Column(String(32), nullable=False, index=True))
    metric_value: float = Field(default=0, sa_column=Column(Float, nullable=False, default=0))
    calculation_date: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))
    period_start: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    period_end: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    source: str = Field(default=MetricSource.CALCULATED.value, sa_column=Column(String(16), nullable=False))
    status: str = Field(default=MetricStatus.ACTIVE.value, sa_column=Column(String(16), nullable=False))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

# -----------------------------------------------------------------------------------------------------------------------
# Checkout

class CheckoutSession(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=public_id_column())
    user_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True))
    session_id: Optional[str] = Field(default=None, sa_column=Column(String(128), index=True, nullable=True))
    status: str = Field(default=CheckoutStatus.ACTIVE.value, sa_column=Column(String(16), nullable=False, index=True))
    current_step: str = Field(default="cart", sa_column=Column(String(32), nullable=False))
    steps: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONDoc, nullable=False))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONDoc, nullable=True))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    abandoned_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))
