"""Pydantic v2 request/response schemas for billing endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# --- Request schemas ---


class SubscribeRequest(BaseModel):
    """Request to purchase a plan immediately."""

    plan: str  # "free", "pro" or "business"
    billing_cycle: str = Field("monthly", pattern="^(monthly|yearly)$")


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    display_name: str
    price_monthly: Decimal
    price_yearly: Decimal
    project_limit: int | None  # None = unlimited
    task_limit: int | None  # None = unlimited
    features: dict[str, bool]


class PlansListResponse(BaseModel):
    """All active plans, cheapest first."""

    plans: list[PlanResponse]
    currency: str


class SubscriptionInfo(BaseModel):
    """The stored subscription row."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    plan_id: uuid.UUID
    status: str
    current_period_start: datetime
    current_period_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None
    stripe_subscription_id: str | None


class EntitlementsResponse(BaseModel):
    """The effective plan after resolution."""

    plan: str
    display_name: str
    project_limit: int | None
    task_limit: int | None
    features: dict[str, bool]
    source: str  # subscription, profile or fallback


class SubscriptionResponse(BaseModel):
    """Current subscription (if any) plus resolved entitlements for the caller."""

    subscription: SubscriptionInfo | None
    entitlements: EntitlementsResponse
    has_payment_method: bool
