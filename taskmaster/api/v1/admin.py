"""Admin API endpoints — trials, plan changes, and plan deletion."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.api.deps import get_current_admin, get_db
from taskmaster.billing.exceptions import (
    InvalidSubscriptionStateError,
    PlanInUseError,
    PlanNotFoundError,
)
from taskmaster.billing.plans import delete_plan, get_plan_by_name
from taskmaster.models.profile import Profile
from taskmaster.models.subscription import Subscription
from taskmaster.notifications import templates
from taskmaster.notifications.dispatcher import NotificationDispatcher, get_dispatcher, send_safely
from taskmaster.schemas.admin import ChangePlanRequest, ExtendTrialRequest, StartTrialRequest
from taskmaster.schemas.billing import SubscriptionInfo
from taskmaster.services.subscription_service import change_plan, extend_trial, start_trial

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


async def _get_subscription_or_404(db: AsyncSession, subscription_id: uuid.UUID) -> Subscription:
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        )
    return subscription


@router.post("/subscriptions/trial", response_model=SubscriptionInfo, status_code=status.HTTP_201_CREATED)
async def grant_trial(
    body: StartTrialRequest,
    db: AsyncSession = Depends(get_db),
    admin: Profile = Depends(get_current_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SubscriptionInfo:
    """Start a trial of a paid plan for a user."""
    profile = await db.get(Profile, body.user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    try:
        plan = await get_plan_by_name(db, body.plan)
        subscription = await start_trial(db, profile, plan, body.days)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidSubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    response = SubscriptionInfo.model_validate(subscription)
    await db.commit()
    logger.info("Admin %s granted %s trial to %s", admin.id, plan.name, profile.id)

    days = (subscription.current_period_end - subscription.current_period_start).days
    await send_safely(
        dispatcher,
        profile.id,
        templates.TRIAL_STARTED,
        profile.preferred_locale,
        {
            "user_name": profile.display_name,
            "plan_name": plan.display_name,
            "days_left": days,
            "end_date": templates.format_date(subscription.current_period_end, profile.preferred_locale),
        },
        to=profile.email,
    )
    return response


@router.post("/subscriptions/{subscription_id}/extend-trial", response_model=SubscriptionInfo)
async def extend_subscription_trial(
    subscription_id: uuid.UUID,
    body: ExtendTrialRequest,
    db: AsyncSession = Depends(get_db),
    admin: Profile = Depends(get_current_admin),
) -> SubscriptionInfo:
    """Push a trial's end date out."""
    subscription = await _get_subscription_or_404(db, subscription_id)
    try:
        await extend_trial(db, subscription, body.days)
    except InvalidSubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    logger.info("Admin %s extended trial %s by %d days", admin.id, subscription_id, body.days)
    return SubscriptionInfo.model_validate(subscription)


@router.post("/subscriptions/{subscription_id}/plan", response_model=SubscriptionInfo)
async def change_subscription_plan(
    subscription_id: uuid.UUID,
    body: ChangePlanRequest,
    db: AsyncSession = Depends(get_db),
    admin: Profile = Depends(get_current_admin),
) -> SubscriptionInfo:
    """Move a live subscription to another plan."""
    subscription = await _get_subscription_or_404(db, subscription_id)
    try:
        plan = await get_plan_by_name(db, body.plan)
        await change_plan(db, subscription, plan)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidSubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    logger.info("Admin %s moved subscription %s to %s", admin.id, subscription_id, plan.name)
    return SubscriptionInfo.model_validate(subscription)


@router.delete("/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_plan(
    plan_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: Profile = Depends(get_current_admin),
) -> None:
    """Delete a plan nobody references."""
    try:
        await delete_plan(db, plan_id)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except PlanInUseError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    logger.info("Admin %s deleted plan %s", admin.id, plan_id)
