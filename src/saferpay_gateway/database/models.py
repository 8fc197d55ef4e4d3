"""SQLAlchemy models for orders, payments and reconciliation locks."""

import enum
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the way it is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PaymentState(str, enum.Enum):
    """Local payment states written by the gateway."""
    AUTHORIZATION = "authorization"
    COMPLETED = "completed"


class Order(Base):
    """Order being paid. Amounts are kept as decimal strings."""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True, default=lambda: str(uuid.uuid4()))
    total_amount_value: Mapped[str] = mapped_column(String(32), nullable=False)
    total_paid_value: Mapped[str] = mapped_column(String(32), nullable=False, default="0")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Opaque key/value data bag shared with other integrations
    data_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def total_amount(self) -> Decimal:
        return Decimal(self.total_amount_value)

    @total_amount.setter
    def total_amount(self, value: Decimal) -> None:
        self.total_amount_value = str(value)

    @property
    def total_paid(self) -> Decimal:
        return Decimal(self.total_paid_value or "0")

    @total_paid.setter
    def total_paid(self, value: Decimal) -> None:
        self.total_paid_value = str(value)

    @property
    def is_paid(self) -> bool:
        return self.total_paid >= self.total_amount

    @property
    def data(self) -> Dict[str, Any]:
        """Get the data bag as dictionary."""
        if self.data_json:
            return json.loads(self.data_json)
        return {}

    @data.setter
    def data(self, value: Optional[Dict[str, Any]]) -> None:
        """Set the data bag from dictionary."""
        if value:
            self.data_json = json.dumps(value)
        else:
            self.data_json = None

    def get_data(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set_data(self, key: str, value: Any) -> "Order":
        data = self.data
        data[key] = value
        self.data = data
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "total_amount": str(self.total_amount),
            "total_paid": str(self.total_paid),
            "currency": self.currency,
            "email": self.email,
            "is_paid": self.is_paid,
            "data": self.data,
        }


class Payment(Base):
    """Payment recorded for an order by a gateway."""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    state: Mapped[str] = mapped_column(String(50), nullable=False)
    amount_value: Mapped[str] = mapped_column(String(32), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_gateway: Mapped[str] = mapped_column(String(64), nullable=False)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False)
    test: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remote_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    remote_state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    authorized_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("payment_gateway", "order_id", name="uq_payments_gateway_order"),
        Index("ix_payments_state", "state"),
    )

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_value)

    @amount.setter
    def amount(self, value: Decimal) -> None:
        self.amount_value = str(value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment to dictionary representation."""
        return {
            "id": self.id,
            "state": self.state,
            "amount": self.amount_value,
            "currency": self.currency,
            "payment_gateway": self.payment_gateway,
            "order_id": self.order_id,
            "test": self.test,
            "remote_id": self.remote_id,
            "remote_state": self.remote_state,
            "authorized_at": self.authorized_at.isoformat() if self.authorized_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ReconciliationLock(Base):
    """Row backing a named lock; the unique name makes acquisition atomic."""
    __tablename__ = "reconciliation_locks"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
