"""In-app notification writer for subscription lifecycle events."""

import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.models.notification import NOTIFICATION_SYSTEM, Notification
from taskmaster.models.profile import DEFAULT_LOCALE

logger = logging.getLogger(__name__)

TRIAL_ENDED = "trial_ended"
SUBSCRIPTION_EXPIRED = "subscription_expired"
TRIAL_REMINDER = "trial_reminder"
SUBSCRIPTION_REMINDER = "subscription_reminder"

# kind -> locale -> (title, body); str.format templates
_COPY: dict[str, dict[str, tuple[str, str]]] = {
    TRIAL_ENDED: {
        "en": ("Trial Period Ended", "Your {plan_name} trial has ended. You are now on the free plan."),
        "lt": ("Bandomasis laikotarpis baigėsi", "Jūsų {plan_name} bandomasis laikotarpis baigėsi. Dabar naudojate nemokamą planą."),
    },
    SUBSCRIPTION_EXPIRED: {
        "en": ("Subscription Expired", "Your {plan_name} subscription has expired. You are now on the free plan."),
        "lt": ("Prenumerata baigėsi", "Jūsų {plan_name} prenumerata baigėsi. Dabar naudojate nemokamą planą."),
    },
    TRIAL_REMINDER: {
        "en": ("Trial ending in {days_left} day(s)", "{payment_hint}"),
        "lt": ("Bandomasis laikotarpis baigiasi po {days_left} d.", "{payment_hint}"),
    },
    SUBSCRIPTION_REMINDER: {
        "en": ("Subscription ending in {days_left} day(s)", "{payment_hint}"),
        "lt": ("Prenumerata baigiasi po {days_left} d.", "{payment_hint}"),
    },
}

_PAYMENT_HINTS: dict[str, tuple[str, str, str]] = {
    # locale -> (with card, without card, canceled at period end)
    "en": (
        "Payment will be automatically charged.",
        "Add a payment method to avoid being moved to the free plan.",
        "Canceled: you will be moved to the free plan when this period ends.",
    ),
    "lt": (
        "Mokėjimas bus nuskaitytas automatiškai.",
        "Pridėkite mokėjimo būdą, kad išvengtumėte perėjimo į nemokamą planą.",
        "Atšaukta: pasibaigus šiam laikotarpiui būsite perkelti į nemokamą planą.",
    ),
}


def build_copy(kind: str, locale: str, **args: Any) -> tuple[str, str]:
    """Return the localized (title, body) for a notification kind."""
    by_locale = _COPY[kind]
    if locale not in by_locale:
        locale = DEFAULT_LOCALE
    title, body = by_locale[locale]
    if "has_payment_method" in args:
        with_card, without_card, canceled = _PAYMENT_HINTS[locale]
        if args.get("cancel_at_period_end"):
            args["payment_hint"] = canceled
        else:
            args["payment_hint"] = with_card if args["has_payment_method"] else without_card
    return title.format(**args), body.format(**args)


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    body: str | None,
    data: dict[str, Any] | None = None,
    notification_type: str = NOTIFICATION_SYSTEM,
) -> Notification:
    """Insert a notification row for a user."""
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        body=body,
        data=data or {},
    )
    db.add(notification)
    await db.flush()
    logger.debug("Created %s notification %s for user %s", notification_type, notification.id, user_id)
    return notification


async def notify_lifecycle_event(
    db: AsyncSession,
    user_id: uuid.UUID,
    kind: str,
    locale: str,
    data: dict[str, Any],
) -> Notification:
    """Create a localized ``system`` notification for a lifecycle event."""
    title, body = build_copy(kind, locale, **data)
    return await create_notification(db, user_id, title=title, body=body, data=data)
