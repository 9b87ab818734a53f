from datetime import datetime, timezone
from enum import StrEnum
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, BigInteger, UniqueConstraint
from sqlmodel import Column, Field, SQLModel


class SubscriptionStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PlanType(StrEnum):
    GLOBAL = "global"
    COURSE = "course"


# ==================== SubscriptionPlan Models ====================


class SubscriptionPlanBase(SQLModel):
    """Base model for subscription plans with shared fields."""

    slug: str = Field(unique=True, index=True, description="Unique plan key")
    name: str = Field(description="Display name")
    name_ru: str | None = Field(default=None, description="Russian display name")
    type: str = Field(default=PlanType.GLOBAL, description="global or course")
    course_id: str | None = Field(default=None, index=True, description="Course covered (set iff type=course)")
    price_monthly: int = Field(sa_type=BigInteger, description="Authoritative monthly price in tiyin")
    currency: str = Field(default="UZS", description="Currency code")
    is_active: bool = Field(default=True, index=True, description="Only active plans are sold or priced")


class SubscriptionPlan(SubscriptionPlanBase, table=True):
    """Subscription plan table: global premium or a single course."""

    __tablename__ = "subscription_plans"  # type: ignore

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )


class SubscriptionPlanRead(SubscriptionPlanBase):
    id: str
    created_at: datetime


# ==================== Subscription Models ====================


class SubscriptionBase(SQLModel):
    """Base model for a user's subscription to one plan."""

    user_id: str = Field(index=True, description="Subscriber")
    plan_id: str = Field(index=True, description="Logical reference to SubscriptionPlan")
    status: str = Field(default=SubscriptionStatus.PENDING, index=True, description="pending, active, cancelled, expired")
    start_date: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    end_date: datetime = Field(sa_column=Column(TIMESTAMP(timezone=True), nullable=False))
    auto_renew: bool = Field(default=False)


class Subscription(SubscriptionBase, table=True):
    """Subscription table, one row per (user, plan), reused on re-purchase."""

    __tablename__ = "subscriptions"  # type: ignore
    __table_args__ = (UniqueConstraint("user_id", "plan_id", name="uq_subscriptions_user_plan"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False, onupdate=lambda: datetime.now(timezone.utc)),
    )


class SubscriptionRead(SQLModel):
    id: UUID
    user_id: str
    plan_id: str
    status: str
    start_date: datetime
    end_date: datetime
    auto_renew: bool
    created_at: datetime
    updated_at: datetime
