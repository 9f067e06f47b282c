"""Scheduled job triggers — called once a day by the external scheduler."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.api.deps import get_db, verify_job_caller
from taskmaster.billing.exceptions import FreePlanMissingError
from taskmaster.jobs.reminders import run_expiry_reminders
from taskmaster.jobs.renewals import run_renewals
from taskmaster.jobs.trial_expiration import run_trial_expiration
from taskmaster.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from taskmaster.schemas.jobs import JobResult

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/jobs",
    tags=["jobs"],
    dependencies=[Depends(verify_job_caller)],
)


def _misconfigured(job: str, exc: FreePlanMissingError) -> HTTPException:
    logger.error("Job %s aborted: %s", job, exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )


@router.post("/expire-trials", response_model=JobResult, response_model_exclude_none=True)
async def expire_trials(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JobResult:
    """Downgrade elapsed trials to the free plan."""
    try:
        return await run_trial_expiration(db, dispatcher=dispatcher)
    except FreePlanMissingError as e:
        raise _misconfigured("expire-trials", e) from e


@router.post("/subscription-check", response_model=JobResult, response_model_exclude_none=True)
async def subscription_check(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JobResult:
    """Charge or downgrade elapsed subscriptions."""
    try:
        return await run_renewals(db, dispatcher=dispatcher)
    except FreePlanMissingError as e:
        raise _misconfigured("subscription-check", e) from e


@router.post("/subscription-reminders", response_model=JobResult, response_model_exclude_none=True)
async def subscription_reminders(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JobResult:
    """Send T-1 and T-3 expiry reminders."""
    return await run_expiry_reminders(db, dispatcher=dispatcher)
