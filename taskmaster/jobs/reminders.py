"""Expiry Reminder Job — warns users one and three days before a period ends."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, or_
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.database import utcnow
from taskmaster.jobs.base import (
    JobRun,
    RowContext,
    load_row,
    process_rows,
    run_step,
    select_candidate_ids,
    send_email,
    with_email_outcome,
)
from taskmaster.models.subscription import PERIOD_BOUND_STATUSES, STATUS_TRIALING, Subscription
from taskmaster.notifications import templates
from taskmaster.notifications.dispatcher import NotificationDispatcher
from taskmaster.schemas.jobs import ACTION_REMINDER_SENT, JobResult
from taskmaster.services import notification_service

logger = logging.getLogger(__name__)

JOB_NAME = "subscription-reminders"

ONE_DAY = timedelta(hours=24)
THREE_DAYS = timedelta(hours=72)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def reminder_predicate(now: datetime) -> list[ColumnElement[bool]]:
    """Periods ending within 72 hours that have not been reminded today."""
    today = start_of_day(now)
    return [
        Subscription.status.in_(PERIOD_BOUND_STATUSES),
        Subscription.stripe_subscription_id.is_(None),
        Subscription.current_period_end >= now,
        Subscription.current_period_end <= now + THREE_DAYS,
        or_(
            Subscription.last_reminder_sent_at.is_(None),
            Subscription.last_reminder_sent_at < today,
            Subscription.last_reminder_sent_at >= today + timedelta(days=1),
        ),
    ]


def days_left(period_end: datetime, now: datetime) -> int:
    """1 for the ``[now, now+24h]`` window, 3 for ``(now+24h, now+72h]``."""
    return 1 if period_end <= now + ONE_DAY else 3


def reminder_outlook(row: RowContext) -> str:
    """What happens when the period ends, for the reminder details."""
    if row.cancel_at_period_end:
        return "canceled at period end"
    return "will auto-renew" if row.has_payment_method else "no payment method"


async def _write_reminder(
    db: AsyncSession,
    subscription: Subscription,
    row: RowContext,
    kind: str,
    data: dict,
    now: datetime,
) -> None:
    await notification_service.notify_lifecycle_event(db, row.user_id, kind, row.locale, data)
    subscription.last_reminder_sent_at = now
    await db.flush()


async def run_expiry_reminders(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> JobResult:
    """Send T-1 and T-3 reminders for trials and subscriptions Stripe does not renew.

    Only the reminder stamp is written; status, plan and period are left alone.
    """
    now = now or utcnow()
    dispatcher = dispatcher or NotificationDispatcher()

    predicate = reminder_predicate(now)
    candidate_ids = await select_candidate_ids(db, predicate)
    logger.info("Job %s: %d subscription(s) due a reminder", JOB_NAME, len(candidate_ids))

    run = JobRun(JOB_NAME)

    async def remind(subscription_id: uuid.UUID) -> None:
        loaded = await load_row(db, subscription_id, predicate)
        if loaded is None:
            logger.info("Job %s: subscription %s no longer matches, skipping", JOB_NAME, subscription_id)
            return
        subscription, row = loaded

        is_trial = row.status == STATUS_TRIALING
        left = days_left(row.period_end, now)
        data = {
            "plan_name": row.plan_name,
            "days_left": left,
            "has_payment_method": row.has_payment_method,
            "cancel_at_period_end": row.cancel_at_period_end,
        }
        kind = notification_service.TRIAL_REMINDER if is_trial else notification_service.SUBSCRIPTION_REMINDER
        await run_step(db, "reminder notification", _write_reminder, subscription, row, kind, data, now)
        await db.commit()

        details = f"{left} days left, {reminder_outlook(row)}"
        run.record(row, ACTION_REMINDER_SENT, details)
        logger.info("Job %s: %d-day reminder for subscription %s", JOB_NAME, left, row.subscription_id)

        email_kind = templates.TRIAL_ENDING_SOON if is_trial else templates.SUBSCRIPTION_EXPIRING_SOON
        outcome = await send_email(
            dispatcher,
            row,
            email_kind,
            row.email_args(
                days_left=left,
                is_trial=is_trial,
                has_payment_method=row.has_payment_method,
                cancel_at_period_end=row.cancel_at_period_end,
            ),
        )
        if not outcome.success:
            run.results[-1].details = with_email_outcome(details, outcome)

    await process_rows(db, run, candidate_ids, remind)
    return run.result()
