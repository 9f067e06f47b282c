"""Subscription service — the subscription record store and user/admin actions.

Every function that creates a subscription first closes the user's current live
row, so a user never has more than one ``trialing``/``active``/``past_due`` row.
"""

import calendar
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.billing.entitlements import EffectivePlan, resolve
from taskmaster.billing.exceptions import (
    InvalidSubscriptionStateError,
    PaymentFailedError,
    PaymentMethodRequiredError,
    PlanNotFoundError,
)
from taskmaster.billing.plans import load_catalog
from taskmaster.billing.stripe_client import ChargeFailure, ChargeResult, create_subscription
from taskmaster.config import settings
from taskmaster.database import utcnow
from taskmaster.models.payment import PAYMENT_SUCCEEDED, Payment
from taskmaster.models.plan import Plan
from taskmaster.models.profile import Profile
from taskmaster.models.subscription import (
    LIVE_STATUSES,
    STATUS_ACTIVE,
    STATUS_CANCELED,
    STATUS_TRIALING,
    Subscription,
)

logger = logging.getLogger(__name__)

BILLING_MONTHLY = "monthly"
BILLING_YEARLY = "yearly"


def add_months(moment: datetime, months: int) -> datetime:
    """Same day-of-month ``months`` later, clamped to the last day of a shorter month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


async def get_live_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """Return the user's trialing/active/past_due subscription, if any."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status.in_(LIVE_STATUSES))
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_current_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """Return the live subscription, else the most recently created one."""
    subscription = await get_live_subscription(db, user_id)
    if subscription is not None:
        return subscription

    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_profile_entitlements(db: AsyncSession, profile: Profile) -> EffectivePlan:
    """Resolve the profile's effective plan from its current subscription."""
    catalog = await load_catalog(db)
    subscription = await get_current_subscription(db, profile.id)
    return resolve(profile, subscription, catalog)


async def mirror_profile_plan(db: AsyncSession, user_id: uuid.UUID, plan_id: uuid.UUID) -> None:
    """Copy the subscription's plan onto the profile's denormalized ``plan_id``."""
    result = await db.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(plan_id=plan_id)
    )
    if result.rowcount == 0:
        raise LookupError(f"Profile {user_id} not found")


async def apply_downgrade(
    db: AsyncSession,
    subscription: Subscription,
    free_plan_id: uuid.UUID,
    now: datetime,
) -> Subscription:
    """Move a subscription to the free plan and end it. The state-defining write of every downgrade."""
    subscription.status = STATUS_CANCELED
    subscription.plan_id = free_plan_id
    subscription.canceled_at = now
    subscription.cancel_at_period_end = False
    await db.flush()
    logger.info(
        "Downgraded subscription %s (user %s) to free plan",
        subscription.id,
        subscription.user_id,
    )
    return subscription


async def attach_processor_subscription(
    db: AsyncSession,
    subscription: Subscription,
    stripe_subscription_id: str,
) -> Subscription:
    """Mark a row as managed by Stripe. Renewal jobs skip it from then on."""
    subscription.stripe_subscription_id = stripe_subscription_id
    await db.flush()
    logger.info("Subscription %s handed over to Stripe subscription %s", subscription.id, stripe_subscription_id)
    return subscription


async def apply_renewal(
    db: AsyncSession,
    subscription: Subscription,
    *,
    stripe_subscription_id: str,
    period_start: datetime,
    period_end: datetime,
    amount: Decimal,
    invoice_id: str | None = None,
) -> Subscription:
    """Hand a charged subscription over to Stripe and record the payment."""
    subscription.stripe_subscription_id = stripe_subscription_id
    subscription.status = STATUS_ACTIVE
    subscription.current_period_start = period_start
    subscription.current_period_end = period_end
    subscription.canceled_at = None
    db.add(
        Payment(
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            amount=amount,
            currency=settings.billing_currency,
            status=PAYMENT_SUCCEEDED,
            stripe_invoice_id=invoice_id,
        )
    )
    await db.flush()
    logger.info(
        "Renewed subscription %s (user %s) via Stripe subscription %s until %s",
        subscription.id,
        subscription.user_id,
        stripe_subscription_id,
        period_end,
    )
    return subscription


async def _close_live_subscription(db: AsyncSession, user_id: uuid.UUID, now: datetime) -> None:
    previous = await get_live_subscription(db, user_id)
    if previous is None:
        return
    if previous.stripe_subscription_id is not None:
        raise InvalidSubscriptionStateError(
            "Subscription is managed by Stripe; change it through the billing portal"
        )
    previous.status = STATUS_CANCELED
    previous.canceled_at = now
    await db.flush()
    logger.info("Closed subscription %s for user %s", previous.id, user_id)


async def subscribe_to_plan(
    db: AsyncSession,
    profile: Profile,
    plan: Plan,
    billing_cycle: str = BILLING_MONTHLY,
) -> Subscription:
    """Purchase a plan immediately.

    Paid plans are charged through Stripe before anything is written; the new
    row is active and processor-managed only once the charge went through.
    A decline raises ``PaymentFailedError`` and leaves the user's rows untouched.
    """
    if not plan.is_active:
        raise PlanNotFoundError(f"Plan {plan.name!r} is not available")
    if billing_cycle not in (BILLING_MONTHLY, BILLING_YEARLY):
        raise ValueError(f"Invalid billing cycle: {billing_cycle!r}")
    if plan.is_paid and not profile.stripe_customer_id:
        raise PaymentMethodRequiredError("Payment method required")

    previous = await get_live_subscription(db, profile.id)
    if previous is not None and previous.stripe_subscription_id is not None:
        raise InvalidSubscriptionStateError(
            "Subscription is managed by Stripe; change it through the billing portal"
        )

    yearly = billing_cycle == BILLING_YEARLY
    charge: ChargeResult | None = None
    if plan.is_paid:
        price_id = plan.stripe_price_yearly if yearly else plan.stripe_price_monthly
        if not price_id:
            raise PaymentFailedError(f"Plan {plan.name!r} has no {billing_cycle} Stripe price")
        outcome = await create_subscription(profile.stripe_customer_id, price_id)
        if isinstance(outcome, ChargeFailure):
            logger.warning("Purchase of %s declined for user %s: %s", plan.name, profile.id, outcome.reason)
            raise PaymentFailedError(outcome.reason)
        charge = outcome

    now = utcnow()
    await _close_live_subscription(db, profile.id, now)

    period_start = (charge and charge.period_start) or now
    period_end = (charge and charge.period_end) or add_months(period_start, 12 if yearly else 1)
    subscription = Subscription(
        user_id=profile.id,
        plan_id=plan.id,
        status=STATUS_ACTIVE,
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=False,
        stripe_customer_id=profile.stripe_customer_id,
        stripe_subscription_id=charge.external_subscription_id if charge else None,
    )
    db.add(subscription)
    await db.flush()

    if charge is not None:
        db.add(
            Payment(
                user_id=profile.id,
                subscription_id=subscription.id,
                amount=plan.price_yearly if yearly else plan.price_monthly,
                currency=settings.billing_currency,
                status=PAYMENT_SUCCEEDED,
                stripe_invoice_id=charge.invoice_id,
            )
        )

    profile.plan_id = plan.id
    await db.flush()
    logger.info("User %s subscribed to %s (%s)", profile.id, plan.name, billing_cycle)
    return subscription


async def start_trial(
    db: AsyncSession,
    profile: Profile,
    plan: Plan,
    days: int | None = None,
) -> Subscription:
    """Grant a time-boxed trial of a paid plan (admin action)."""
    days = days or settings.default_trial_days
    if days <= 0:
        raise ValueError("Trial length must be positive")
    if not plan.is_active or not plan.is_paid:
        raise PlanNotFoundError(f"Plan {plan.name!r} cannot be trialed")

    now = utcnow()
    await _close_live_subscription(db, profile.id, now)

    subscription = Subscription(
        user_id=profile.id,
        plan_id=plan.id,
        status=STATUS_TRIALING,
        current_period_start=now,
        current_period_end=now + timedelta(days=days),
        cancel_at_period_end=False,
        stripe_customer_id=profile.stripe_customer_id,
    )
    db.add(subscription)
    profile.plan_id = plan.id
    await db.flush()
    logger.info("Started %d-day %s trial for user %s", days, plan.name, profile.id)
    return subscription


async def extend_trial(db: AsyncSession, subscription: Subscription, days: int) -> Subscription:
    """Push a trial's end date out by ``days``."""
    if subscription.status != STATUS_TRIALING:
        raise InvalidSubscriptionStateError("Only trialing subscriptions can be extended")
    if days <= 0:
        raise ValueError("Extension must be positive")

    base = subscription.current_period_end or utcnow()
    subscription.current_period_end = base + timedelta(days=days)
    await db.flush()
    logger.info("Extended trial %s by %d days", subscription.id, days)
    return subscription


async def change_plan(db: AsyncSession, subscription: Subscription, plan: Plan) -> Subscription:
    """Switch a live subscription to another plan (admin action) and mirror it on the profile."""
    if not subscription.is_live:
        raise InvalidSubscriptionStateError("Only live subscriptions can change plan")
    if not plan.is_active:
        raise PlanNotFoundError(f"Plan {plan.name!r} is not available")

    subscription.plan_id = plan.id
    await db.flush()
    await mirror_profile_plan(db, subscription.user_id, plan.id)
    logger.info("Changed subscription %s to plan %s", subscription.id, plan.name)
    return subscription


async def cancel_subscription(db: AsyncSession, subscription: Subscription) -> Subscription:
    """Stop renewal at the end of the current period. Entitlements last until then."""
    if subscription.status not in (STATUS_ACTIVE, STATUS_TRIALING):
        raise InvalidSubscriptionStateError("Subscription is not active")
    subscription.cancel_at_period_end = True
    await db.flush()
    logger.info("Subscription %s set to cancel at period end", subscription.id)
    return subscription


async def resume_subscription(db: AsyncSession, subscription: Subscription) -> Subscription:
    """Undo a pending cancellation."""
    if subscription.status not in (STATUS_ACTIVE, STATUS_TRIALING):
        raise InvalidSubscriptionStateError("Subscription is not active")
    subscription.cancel_at_period_end = False
    await db.flush()
    logger.info("Subscription %s resumed", subscription.id)
    return subscription
