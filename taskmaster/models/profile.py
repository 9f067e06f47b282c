"""Profile model — account data the billing core needs about a user."""

import uuid

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from taskmaster.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

ROLE_USER = "user"
ROLE_ADMIN = "admin"

SUPPORTED_LOCALES = ("en", "lt")
DEFAULT_LOCALE = "en"


class Profile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user profile. Identity and sessions are owned by the auth service."""

    __tablename__ = "profiles"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default=ROLE_USER, nullable=False)
    locale: Mapped[str] = mapped_column(String(10), default=DEFAULT_LOCALE, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Mirror of the effective plan; the subscription row stays authoritative
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    # Stored payment method (Stripe customer with a default card)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]

    @property
    def preferred_locale(self) -> str:
        return self.locale if self.locale in SUPPORTED_LOCALES else DEFAULT_LOCALE

    def __repr__(self) -> str:
        return f"<Profile id={self.id} email={self.email!r} role={self.role!r}>"
