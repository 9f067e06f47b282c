"""Plan model — pricing tiers, usage limits, and feature flags."""

from decimal import Decimal

from sqlalchemy import JSON, Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from taskmaster.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Plan(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A pricing tier. The row named ``free`` is the downgrade target for every job."""

    __tablename__ = "plans"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Pricing (billing currency, see settings.billing_currency)
    price_monthly: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    price_yearly: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Limits, None = unlimited
    project_limit: Mapped[int | None] = mapped_column(nullable=True)
    task_limit: Mapped[int | None] = mapped_column(nullable=True)

    # Feature id -> enabled; validated through billing.features.FeatureSet
    features: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Stripe price identifiers
    stripe_price_monthly: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_price_yearly: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def is_paid(self) -> bool:
        return self.price_monthly > 0 or self.price_yearly > 0

    def __repr__(self) -> str:
        return f"<Plan name={self.name!r} active={self.is_active}>"
