"""Trial Expiration Job — moves elapsed trials to the free plan."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import ColumnElement
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.billing.plans import get_free_plan
from taskmaster.database import utcnow
from taskmaster.jobs.base import JobRun, downgrade_and_notify, load_row, process_rows, select_candidate_ids
from taskmaster.models.subscription import STATUS_TRIALING, Subscription
from taskmaster.notifications import templates
from taskmaster.notifications.dispatcher import NotificationDispatcher
from taskmaster.schemas.jobs import ACTION_TRIAL_EXPIRED, JobResult
from taskmaster.services import notification_service

logger = logging.getLogger(__name__)

JOB_NAME = "expire-trials"


def expired_trial_predicate(now: datetime) -> list[ColumnElement[bool]]:
    return [
        Subscription.status == STATUS_TRIALING,
        Subscription.current_period_end < now,
        Subscription.stripe_subscription_id.is_(None),
    ]


async def run_trial_expiration(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> JobResult:
    """Downgrade every trial whose period has ended and that Stripe does not manage.

    Raises:
        FreePlanMissingError: Before any row is touched, if there is no active free plan.
    """
    now = now or utcnow()
    dispatcher = dispatcher or NotificationDispatcher()
    free_plan_id = (await get_free_plan(db)).id

    predicate = expired_trial_predicate(now)
    candidate_ids = await select_candidate_ids(db, predicate)
    logger.info("Job %s: %d expired trial(s) found", JOB_NAME, len(candidate_ids))

    run = JobRun(JOB_NAME)

    async def expire(subscription_id: uuid.UUID) -> None:
        loaded = await load_row(db, subscription_id, predicate)
        if loaded is None:
            logger.info("Job %s: subscription %s no longer matches, skipping", JOB_NAME, subscription_id)
            return
        subscription, row = loaded
        await downgrade_and_notify(
            db,
            run,
            subscription,
            row,
            free_plan_id=free_plan_id,
            now=now,
            action=ACTION_TRIAL_EXPIRED,
            notification_kind=notification_service.TRIAL_ENDED,
            email_kind=templates.TRIAL_ENDED,
            dispatcher=dispatcher,
        )

    await process_rows(db, run, candidate_ids, expire)
    return run.result()
