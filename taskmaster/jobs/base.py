"""Shared plumbing for the scheduled subscription jobs.

Every job follows the same shape: snapshot the ids of the rows matching its
predicate, then for each id re-select the row with the predicate re-applied
(an overlapping run may already have moved it), run the write steps in
savepoints, and commit before moving on. Emails go out only after the commit.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import ColumnElement, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.models.plan import Plan
from taskmaster.models.profile import Profile
from taskmaster.models.subscription import Subscription
from taskmaster.notifications.dispatcher import DispatchResult, NotificationDispatcher, send_safely
from taskmaster.notifications.templates import format_date
from taskmaster.schemas.jobs import JobResult, RowResult
from taskmaster.services.notification_service import notify_lifecycle_event
from taskmaster.services.subscription_service import apply_downgrade, mirror_profile_plan

logger = logging.getLogger(__name__)


class RowStepError(Exception):
    """A write step failed inside its savepoint. Earlier steps of the row are intact."""

    def __init__(self, step: str, cause: Exception) -> None:
        super().__init__(f"{step} failed: {cause}")
        self.step = step


@dataclass(frozen=True)
class RowContext:
    """Plain values captured from a selected row before any write.

    A rolled-back savepoint expires the ORM objects it touched, so everything
    needed after a write (copy, email, results) is read from here instead.
    """

    subscription_id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID
    plan_name: str
    status: str
    period_end: datetime | None
    customer_id: str | None
    price_id: str | None
    price_monthly: Decimal
    cancel_at_period_end: bool
    email: str | None
    user_name: str
    locale: str

    @classmethod
    def capture(cls, subscription: Subscription, plan: Plan, profile: Profile) -> "RowContext":
        return cls(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            plan_id=plan.id,
            plan_name=plan.display_name or plan.name,
            status=subscription.status,
            period_end=subscription.current_period_end,
            customer_id=subscription.stripe_customer_id or profile.stripe_customer_id,
            price_id=plan.stripe_price_monthly,
            price_monthly=plan.price_monthly,
            cancel_at_period_end=subscription.cancel_at_period_end,
            email=profile.email,
            user_name=profile.display_name,
            locale=profile.preferred_locale,
        )

    @property
    def has_payment_method(self) -> bool:
        return bool(self.customer_id)

    def email_args(self, **extra: Any) -> dict[str, Any]:
        args: dict[str, Any] = {"user_name": self.user_name, "plan_name": self.plan_name}
        if self.period_end is not None:
            args["end_date"] = format_date(self.period_end, self.locale)
        args.update(extra)
        return args


class JobRun:
    """Accumulates row outcomes and errors for one job invocation."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.results: list[RowResult] = []
        self.errors: list[str] = []

    def record(self, row: RowContext, action: str, details: str | None = None) -> None:
        self.results.append(
            RowResult(
                subscription_id=row.subscription_id,
                user_id=row.user_id,
                action=action,
                plan_name=row.plan_name,
                details=details,
            )
        )

    def fail(self, message: str) -> None:
        self.errors.append(message)

    def result(self) -> JobResult:
        logger.info(
            "Job %s finished: %d processed, %d errors",
            self.name,
            len(self.results),
            len(self.errors),
        )
        return JobResult(
            success=True,
            processed=len(self.results),
            results=self.results,
            errors=self.errors or None,
        )


async def select_candidate_ids(db: AsyncSession, predicate: list[ColumnElement[bool]]) -> list[uuid.UUID]:
    """Snapshot the ids of rows matching ``predicate``, oldest period end first."""
    result = await db.execute(
        select(Subscription.id)
        .where(*predicate)
        .order_by(Subscription.current_period_end, Subscription.id)
    )
    return list(result.scalars().all())


async def load_row(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    predicate: list[ColumnElement[bool]],
) -> tuple[Subscription, RowContext] | None:
    """Re-select one candidate with its plan and profile. None if it no longer matches."""
    result = await db.execute(
        select(Subscription, Plan, Profile)
        .join(Plan, Plan.id == Subscription.plan_id)
        .join(Profile, Profile.id == Subscription.user_id)
        .where(Subscription.id == subscription_id, *predicate)
        .execution_options(populate_existing=True)
    )
    row = result.one_or_none()
    if row is None:
        return None
    subscription, plan, profile = row
    return subscription, RowContext.capture(subscription, plan, profile)


async def run_step(db: AsyncSession, step: str, func, *args: Any, **kwargs: Any) -> Any:
    """Run one write step in a savepoint, wrapping any failure in ``RowStepError``."""
    try:
        async with db.begin_nested():
            return await func(db, *args, **kwargs)
    except Exception as e:
        raise RowStepError(step, e) from e


async def process_rows(db: AsyncSession, run: JobRun, candidate_ids: list[uuid.UUID], handler) -> None:
    """Call ``handler(subscription_id)`` for each candidate, isolating failures per row.

    A failed savepoint step leaves the outer transaction usable, so whatever
    the row completed before it is committed. Any other failure rolls the row back.
    """
    for subscription_id in candidate_ids:
        try:
            await handler(subscription_id)
        except RowStepError as e:
            logger.exception("Job %s: subscription %s: %s", run.name, subscription_id, e)
            run.fail(f"Error processing subscription {subscription_id}: {e}")
            await db.commit()
        except Exception as e:
            logger.exception("Job %s: error processing subscription %s", run.name, subscription_id)
            run.fail(f"Error processing subscription {subscription_id}: {e}")
            await db.rollback()


async def send_email(
    dispatcher: NotificationDispatcher,
    row: RowContext,
    template_kind: str,
    template_args: dict[str, Any],
) -> DispatchResult:
    """Request an email for a row. Delivery failures are returned, never raised."""
    return await send_safely(
        dispatcher,
        row.user_id,
        template_kind,
        row.locale,
        template_args,
        to=row.email,
    )


def with_email_outcome(details: str | None, outcome: DispatchResult) -> str | None:
    if outcome.success:
        return details
    note = f"email not sent: {outcome.error}"
    return f"{details}; {note}" if details else note


async def downgrade_and_notify(
    db: AsyncSession,
    run: JobRun,
    subscription: Subscription,
    row: RowContext,
    *,
    free_plan_id: uuid.UUID,
    now: datetime,
    action: str,
    notification_kind: str,
    email_kind: str,
    dispatcher: NotificationDispatcher,
    details: str | None = None,
) -> None:
    """Move a row to the free plan and tell the user.

    Steps run in order: subscription transition, profile mirror, in-app
    notification, then (after commit) the email. A failure in either of the
    first two raises ``RowStepError`` and skips the rest. A failed notification
    is recorded as an error but the email is still requested.
    """
    await run_step(db, "subscription downgrade", apply_downgrade, subscription, free_plan_id, now)
    await run_step(db, "profile mirror", mirror_profile_plan, row.user_id, free_plan_id)
    logger.info(
        "Job %s: subscription %s (user %s) downgraded from %s to free",
        run.name,
        row.subscription_id,
        row.user_id,
        row.plan_name,
    )

    try:
        await run_step(
            db,
            "notification",
            notify_lifecycle_event,
            row.user_id,
            notification_kind,
            row.locale,
            {"plan_name": row.plan_name},
        )
    except RowStepError as e:
        logger.exception("Job %s: subscription %s: %s", run.name, row.subscription_id, e)
        run.fail(f"Error processing subscription {row.subscription_id}: {e}")

    await db.commit()
    run.record(row, action, details)

    outcome = await send_email(dispatcher, row, email_kind, row.email_args())
    if not outcome.success:
        run.results[-1].details = with_email_outcome(details, outcome)
