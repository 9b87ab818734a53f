"""Pydantic request/response schemas for the checkout, webhook and admin APIs.

Bodies are camelCase on the wire and snake_case in Python.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from billing.models.payment import OrderKind, PaymentProviderName, PurchaseType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== Checkout ====================


class CheckoutRequest(CamelModel):
    order_type: OrderKind = Field(description="subscription or purchase")
    provider: PaymentProviderName = Field(description="payme or click")
    plan_id: str | None = Field(default=None, description="Required for subscription orders")
    purchase_type: PurchaseType | None = Field(default=None, description="Required for purchase orders")
    course_id: str | None = Field(default=None, description="Required for course_access purchases")
    quantity: int | None = Field(default=None, ge=1, le=100, description="Units for roadmap/ai_credits purchases")
    return_url: str | None = Field(default=None, description="Where the provider sends the user afterwards")


class CheckoutResponse(CamelModel):
    order_id: UUID
    payment_url: str
    amount: int = Field(description="Amount in tiyin")
    currency: str
    provider: str


class PaymentStatusResponse(CamelModel):
    status: str
    order_type: OrderKind
    amount: int


class ProviderInfo(CamelModel):
    id: str
    name: str
    configured: bool


class PurchasePricingItem(CamelModel):
    type: str
    price: int
    name: str
    name_ru: str
    price_formatted: str


class PaymentHistoryItem(CamelModel):
    id: UUID
    type: str
    description: str
    amount: int
    currency: str
    status: str
    provider: str | None = None
    created_at: datetime


class CoursePricingResponse(CamelModel):
    course_id: str
    course_slug: str
    course_name: str
    price: int
    currency: str
    price_formatted: str
    has_access: bool


class CourseAccessItem(CamelModel):
    course_id: str
    course_slug: str
    course_name: str
    purchased_at: datetime
    expires_at: datetime | None = None


class RoadmapCreditsResponse(CamelModel):
    used: int
    available: int
    can_generate: bool


# ==================== Admin ====================


class RefundRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=500)


class RefundResponse(CamelModel):
    order_id: UUID
    status: str
    amount: int
    currency: str


class ExtendSubscriptionRequest(CamelModel):
    days: int = Field(ge=1, le=3650, description="Days to add")


class SubscriptionAdminResponse(CamelModel):
    id: UUID
    user_id: str
    plan_id: str
    status: str
    start_date: datetime
    end_date: datetime
    auto_renew: bool
