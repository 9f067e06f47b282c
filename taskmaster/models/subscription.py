"""Subscription model — the per-user billing state machine."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, validates

from taskmaster.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

STATUS_TRIALING = "trialing"
STATUS_ACTIVE = "active"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"

SUBSCRIPTION_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE, STATUS_PAST_DUE, STATUS_CANCELED)

# A user has at most one row in one of these statuses
LIVE_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE, STATUS_PAST_DUE)

# Statuses that require current_period_end
PERIOD_BOUND_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE)

_LIVE_CLAUSE = "status IN ('trialing', 'active', 'past_due')"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's plan, billing status, and billing period.

    Rows are never deleted; cancellation is a status transition. A row with a
    ``stripe_subscription_id`` is renewed by Stripe and ignored by the batch jobs.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "status NOT IN ('trialing', 'active') OR current_period_end IS NOT NULL",
            name="ck_subscriptions_period_end_required",
        ),
        Index(
            "uq_subscriptions_one_live_per_user",
            "user_id",
            unique=True,
            postgresql_where=text(_LIVE_CLAUSE),
            sqlite_where=text(_LIVE_CLAUSE),
        ),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(String(50), nullable=False, default=STATUS_ACTIVE, index=True)

    # Billing period
    current_period_start: Mapped[datetime] = mapped_column(nullable=False)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canceled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Stripe identifiers
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    # Set by the expiry reminder job; prevents a second reminder on the same day
    last_reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @validates("status")
    def _validate_status(self, key: str, value: str) -> str:
        if value not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Invalid subscription status: {value!r}")
        return value

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def is_processor_managed(self) -> bool:
        return self.stripe_subscription_id is not None

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"
