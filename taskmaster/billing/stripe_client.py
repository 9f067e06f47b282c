"""Async Stripe API wrapper for the billing core."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import stripe
from stripe import StripeClient

from taskmaster.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeResult:
    """A processor-side subscription created and paid for."""

    external_subscription_id: str
    period_start: datetime | None
    period_end: datetime | None
    invoice_id: str | None = None


@dataclass(frozen=True)
class ChargeFailure:
    """A charge that did not go through. An expected outcome, not an exception."""

    reason: str
    code: str | None = None


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _get_first_item(stripe_sub: stripe.Subscription):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    sub_items = stripe_sub["items"]
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_invoice_id(stripe_sub: stripe.Subscription) -> str | None:
    """``latest_invoice`` is an id unless the request expanded it."""
    invoice = stripe_sub.get("latest_invoice")
    if invoice is None or isinstance(invoice, str):
        return invoice
    return invoice.id


def _get_period(stripe_sub: stripe.Subscription) -> tuple[datetime | None, datetime | None]:
    """Extract current period start/end from the subscription item.

    In Stripe API 2025-08-27 (basil), current_period_start/end moved
    from the subscription object to the subscription item.
    """
    item = _get_first_item(stripe_sub)
    if item:
        return (
            _ts_to_naive(getattr(item, "current_period_start", None)),
            _ts_to_naive(getattr(item, "current_period_end", None)),
        )
    return None, None


async def create_subscription(
    customer_id: str,
    price_id: str,
    idempotency_key: str | None = None,
) -> ChargeResult | ChargeFailure:
    """Create a Stripe subscription for ``price_id`` and charge the customer's default card.

    ``error_if_incomplete`` makes Stripe fail the call instead of leaving an
    unpaid subscription behind, so a decline surfaces as ``ChargeFailure``.
    Retries with the same ``idempotency_key`` return the original subscription
    instead of charging twice.
    """
    if not settings.stripe_secret_key:
        return ChargeFailure(reason="Stripe is not configured", code="not_configured")

    client = get_stripe_client()
    logger.info("Creating Stripe subscription for customer %s, price %s", customer_id, price_id)
    try:
        stripe_sub = await client.v1.subscriptions.create_async(
            params={
                "customer": customer_id,
                "items": [{"price": price_id}],
                "payment_behavior": "error_if_incomplete",
            },
            options={"idempotency_key": idempotency_key} if idempotency_key else {},
        )
    except stripe.StripeError as e:
        logger.warning("Stripe charge failed for customer %s: %s", customer_id, e)
        return ChargeFailure(reason=e.user_message or str(e), code=e.code)

    period_start, period_end = _get_period(stripe_sub)
    logger.info("Stripe subscription %s created for customer %s", stripe_sub.id, customer_id)
    return ChargeResult(
        external_subscription_id=stripe_sub.id,
        period_start=period_start,
        period_end=period_end,
        invoice_id=_get_invoice_id(stripe_sub),
    )


async def cancel_processor_subscription(external_subscription_id: str) -> bool:
    """Cancel a Stripe subscription immediately. Returns False instead of raising."""
    if not settings.stripe_secret_key:
        return False

    client = get_stripe_client()
    try:
        await client.v1.subscriptions.cancel_async(external_subscription_id)
    except stripe.StripeError as e:
        logger.error("Could not cancel Stripe subscription %s: %s", external_subscription_id, e)
        return False

    logger.info("Canceled Stripe subscription %s", external_subscription_id)
    return True
