"""Renewal-or-Downgrade Job — charges elapsed subscriptions or moves them to the free plan."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import ColumnElement
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.billing.plans import get_free_plan
from taskmaster.billing.stripe_client import ChargeFailure, cancel_processor_subscription, create_subscription
from taskmaster.database import utcnow
from taskmaster.jobs.base import (
    JobRun,
    RowContext,
    RowStepError,
    downgrade_and_notify,
    load_row,
    process_rows,
    run_step,
    select_candidate_ids,
    send_email,
    with_email_outcome,
)
from taskmaster.models.subscription import PERIOD_BOUND_STATUSES, Subscription
from taskmaster.notifications import templates
from taskmaster.notifications.dispatcher import NotificationDispatcher
from taskmaster.schemas.jobs import ACTION_CHARGED, ACTION_DOWNGRADED, JobResult
from taskmaster.services import notification_service
from taskmaster.services.subscription_service import (
    add_months,
    apply_renewal,
    attach_processor_subscription,
    mirror_profile_plan,
)

logger = logging.getLogger(__name__)

JOB_NAME = "subscription-check"

DETAILS_NO_PAYMENT_METHOD = "No payment method"
DETAILS_CANCELED = "Canceled at period end"


def elapsed_period_predicate(now: datetime) -> list[ColumnElement[bool]]:
    return [
        Subscription.status.in_(PERIOD_BOUND_STATUSES),
        Subscription.current_period_end < now,
        Subscription.stripe_subscription_id.is_(None),
    ]


def renewal_idempotency_key(row: RowContext) -> str:
    """One key per subscription period, so a retried run cannot charge the same period twice."""
    period_end = row.period_end.strftime("%Y%m%dT%H%M%S") if row.period_end else "none"
    return f"renewal-{row.subscription_id}-{period_end}"


async def run_renewals(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> JobResult:
    """Renew or downgrade every elapsed subscription that Stripe does not manage.

    A row with a payment method and a Stripe price is charged once, and the
    Stripe subscription id is committed before any other write. A declined
    charge, a missing payment method, or a pending cancellation downgrades the
    row to the free plan; none of these is an error.

    Raises:
        FreePlanMissingError: Before any row is touched, if there is no active free plan.
    """
    now = now or utcnow()
    dispatcher = dispatcher or NotificationDispatcher()
    free_plan_id = (await get_free_plan(db)).id

    predicate = elapsed_period_predicate(now)
    candidate_ids = await select_candidate_ids(db, predicate)
    logger.info("Job %s: %d elapsed subscription(s) found", JOB_NAME, len(candidate_ids))

    run = JobRun(JOB_NAME)

    async def downgrade(subscription, row: RowContext, details: str) -> None:
        await downgrade_and_notify(
            db,
            run,
            subscription,
            row,
            free_plan_id=free_plan_id,
            now=now,
            action=ACTION_DOWNGRADED,
            notification_kind=notification_service.SUBSCRIPTION_EXPIRED,
            email_kind=templates.SUBSCRIPTION_EXPIRED,
            dispatcher=dispatcher,
            details=details,
        )

    async def renew_or_downgrade(subscription_id: uuid.UUID) -> None:
        loaded = await load_row(db, subscription_id, predicate)
        if loaded is None:
            logger.info("Job %s: subscription %s no longer matches, skipping", JOB_NAME, subscription_id)
            return
        subscription, row = loaded

        if row.cancel_at_period_end:
            await downgrade(subscription, row, DETAILS_CANCELED)
            return
        if not row.customer_id:
            await downgrade(subscription, row, DETAILS_NO_PAYMENT_METHOD)
            return
        if not row.price_id:
            await downgrade(subscription, row, f"Payment failed: no Stripe price for plan {row.plan_name}")
            return

        charge = await create_subscription(
            row.customer_id,
            row.price_id,
            idempotency_key=renewal_idempotency_key(row),
        )
        if isinstance(charge, ChargeFailure):
            logger.info(
                "Job %s: charge for subscription %s failed (%s), downgrading",
                JOB_NAME,
                row.subscription_id,
                charge.code or charge.reason,
            )
            await downgrade(subscription, row, f"Payment failed: {charge.reason}")
            return

        # committed alone: from here on no run selects this row for another charge
        try:
            await run_step(
                db,
                "processor handover",
                attach_processor_subscription,
                subscription,
                charge.external_subscription_id,
            )
        except RowStepError as e:
            canceled = await cancel_processor_subscription(charge.external_subscription_id)
            state = "canceled" if canceled else "still active, needs manual review"
            raise RowStepError(
                "processor handover",
                RuntimeError(f"{e.__cause__}; Stripe subscription {charge.external_subscription_id} {state}"),
            ) from e
        await db.commit()

        period_start = charge.period_start or now
        period_end = charge.period_end or add_months(period_start, 1)
        await run_step(
            db,
            "renewal",
            apply_renewal,
            subscription,
            stripe_subscription_id=charge.external_subscription_id,
            period_start=period_start,
            period_end=period_end,
            amount=row.price_monthly,
            invoice_id=charge.invoice_id,
        )
        await run_step(db, "profile mirror", mirror_profile_plan, row.user_id, row.plan_id)
        await db.commit()

        details = f"Charged via Stripe subscription {charge.external_subscription_id}"
        run.record(row, ACTION_CHARGED, details)

        outcome = await send_email(
            dispatcher,
            row,
            templates.SUBSCRIPTION_RENEWED,
            row.email_args(end_date=templates.format_date(period_end, row.locale)),
        )
        if not outcome.success:
            run.results[-1].details = with_email_outcome(details, outcome)

    await process_rows(db, run, candidate_ids, renew_or_downgrade)
    return run.result()
