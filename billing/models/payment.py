"""Order ledger models: subscription payments, one-time purchases and the provider transaction journal."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, BigInteger, UniqueConstraint
from sqlmodel import Column, Field, SQLModel


class OrderStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# The only legal (from, to) pairs. Everything else is rejected by the ledger.
LEGAL_TRANSITIONS: frozenset[tuple[OrderStatus, OrderStatus]] = frozenset(
    {
        (OrderStatus.PENDING, OrderStatus.COMPLETED),
        (OrderStatus.PENDING, OrderStatus.FAILED),
        (OrderStatus.COMPLETED, OrderStatus.REFUNDED),
    }
)


class OrderKind(StrEnum):
    SUBSCRIPTION = "subscription"
    PURCHASE = "purchase"


class PurchaseType(StrEnum):
    ROADMAP_GENERATION = "roadmap_generation"
    AI_CREDITS = "ai_credits"
    COURSE_ACCESS = "course_access"


class PaymentProviderName(StrEnum):
    PAYME = "payme"
    CLICK = "click"


# ==================== Payment (subscription order) ====================


class PaymentBase(SQLModel):
    subscription_id: UUID = Field(index=True, description="Subscription this payment pays for")
    amount: int = Field(sa_type=BigInteger, description="Amount in minor units (tiyin), immutable")
    currency: str = Field(default="UZS", description="Currency code")
    status: str = Field(default=OrderStatus.PENDING, index=True, description="pending, completed, failed, refunded")
    provider: str | None = Field(default=None, description="Provider that settled the order")
    provider_tx_id: str | None = Field(default=None, index=True, description="Provider transaction ID")


class Payment(PaymentBase, table=True):
    """Subscription payment, the permanent financial record of one billing period."""

    __tablename__ = "payments"  # type: ignore

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False, onupdate=lambda: datetime.now(timezone.utc)),
    )


class PaymentCreate(SQLModel):
    subscription_id: UUID
    amount: int
    currency: str = "UZS"


class PaymentRead(PaymentBase):
    id: UUID
    created_at: datetime
    updated_at: datetime


# ==================== Purchase (one-time order) ====================


class PurchaseBase(SQLModel):
    user_id: str = Field(index=True, description="Buyer")
    type: str = Field(description="roadmap_generation, ai_credits or course_access")
    quantity: int = Field(default=1, description="Units bought")
    amount: int = Field(sa_type=BigInteger, description="Amount in minor units (tiyin), immutable")
    currency: str = Field(default="UZS", description="Currency code")
    status: str = Field(default=OrderStatus.PENDING, index=True, description="pending, completed, failed, refunded")
    provider: str | None = Field(default=None, description="Provider that settled the order")
    provider_tx_id: str | None = Field(default=None, index=True, description="Provider transaction ID")


class Purchase(PurchaseBase, table=True):
    """One-time purchase of a digital good."""

    __tablename__ = "purchases"  # type: ignore

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    # "metadata" is reserved on declarative classes; the column keeps its name.
    meta: dict[str, Any] | None = Field(default=None, sa_column=Column("metadata", JSON, nullable=True))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False, onupdate=lambda: datetime.now(timezone.utc)),
    )


class PurchaseCreate(SQLModel):
    user_id: str
    type: PurchaseType
    quantity: int = 1
    amount: int
    currency: str = "UZS"
    meta: dict[str, Any] | None = None


class PurchaseRead(PurchaseBase):
    id: UUID
    meta: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


Order = Payment | Purchase


# ==================== PaymentTransaction (provider journal) ====================


class ProviderTxState:
    """Payme transaction states; Click prepare/complete map onto the same values."""

    CREATED = 1
    PERFORMED = 2
    CANCELLED = -1
    CANCELLED_AFTER_PERFORM = -2


class PaymentTransaction(SQLModel, table=True):
    """One provider-side transaction against an order.

    The integer id doubles as Click's ``merchant_prepare_id`` and Payme's
    ``transaction`` field.
    """

    __tablename__ = "payment_transactions"  # type: ignore
    __table_args__ = (UniqueConstraint("provider", "provider_tx_id", name="uq_payment_transactions_provider_tx"),)

    id: int | None = Field(default=None, primary_key=True)
    order_id: UUID = Field(index=True)
    order_type: str = Field(description="subscription or purchase")
    provider: str
    provider_tx_id: str
    amount: int = Field(sa_type=BigInteger)
    state: int = Field(default=ProviderTxState.CREATED)
    provider_time: int = Field(default=0, sa_type=BigInteger, description="Provider timestamp in ms (Payme 'time')")
    reason: int | None = Field(default=None, description="Cancellation reason code")
    performed_at: datetime | None = Field(default=None, sa_column=Column(TIMESTAMP(timezone=True), nullable=True))
    cancelled_at: datetime | None = Field(default=None, sa_column=Column(TIMESTAMP(timezone=True), nullable=True))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
