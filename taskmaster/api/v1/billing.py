"""Billing API endpoints — plan catalog, current subscription, and user subscription actions."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.api.deps import get_current_user, get_db, get_entitlements
from taskmaster.billing.entitlements import EffectivePlan
from taskmaster.billing.exceptions import (
    FreePlanMissingError,
    InvalidSubscriptionStateError,
    PaymentFailedError,
    PaymentMethodRequiredError,
    PlanNotFoundError,
)
from taskmaster.billing.plans import get_plan_by_name, list_active_plans
from taskmaster.config import settings
from taskmaster.models.profile import Profile
from taskmaster.notifications import templates
from taskmaster.notifications.dispatcher import NotificationDispatcher, get_dispatcher, send_safely
from taskmaster.schemas.billing import (
    EntitlementsResponse,
    PlanResponse,
    PlansListResponse,
    SubscribeRequest,
    SubscriptionInfo,
    SubscriptionResponse,
)
from taskmaster.services.subscription_service import (
    cancel_subscription,
    get_current_subscription,
    get_live_subscription,
    get_profile_entitlements,
    resume_subscription,
    subscribe_to_plan,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _entitlements_response(plan: EffectivePlan) -> EntitlementsResponse:
    return EntitlementsResponse(
        plan=plan.name,
        display_name=plan.display_name,
        project_limit=plan.project_limit,
        task_limit=plan.task_limit,
        features=plan.features.to_json(),
        source=plan.source,
    )


async def _subscription_response(db: AsyncSession, profile: Profile) -> SubscriptionResponse:
    try:
        plan = await get_profile_entitlements(db, profile)
    except FreePlanMissingError as e:
        logger.error("Cannot resolve entitlements for %s: %s", profile.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e

    subscription = await get_current_subscription(db, profile.id)
    return SubscriptionResponse(
        subscription=SubscriptionInfo.model_validate(subscription) if subscription else None,
        entitlements=_entitlements_response(plan),
        has_payment_method=bool(profile.stripe_customer_id),
    )


async def _require_live_subscription(db: AsyncSession, profile: Profile):
    subscription = await get_live_subscription(db, profile.id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active subscription",
        )
    return subscription


@router.get("/plans", response_model=PlansListResponse)
async def list_plans(db: AsyncSession = Depends(get_db)) -> PlansListResponse:
    """List available plans (public — no auth required)."""
    plans = await list_active_plans(db)
    return PlansListResponse(
        plans=[PlanResponse.model_validate(p) for p in plans],
        currency=settings.billing_currency,
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
) -> SubscriptionResponse:
    """Get the current subscription and resolved entitlements."""
    return await _subscription_response(db, current_user)


@router.get("/entitlements", response_model=EntitlementsResponse)
async def get_my_entitlements(plan: EffectivePlan = Depends(get_entitlements)) -> EntitlementsResponse:
    """Effective plan, limits and features for the caller."""
    return _entitlements_response(plan)


@router.post("/subscribe", response_model=SubscriptionResponse)
async def subscribe(
    body: SubscribeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SubscriptionResponse:
    """Purchase a plan. Paid plans are charged to the stored payment method first."""
    try:
        plan = await get_plan_by_name(db, body.plan)
        subscription = await subscribe_to_plan(db, current_user, plan, body.billing_cycle)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except (PaymentMethodRequiredError, PaymentFailedError) as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e)) from e
    except InvalidSubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    response = await _subscription_response(db, current_user)
    await db.commit()

    if plan.is_paid:
        await send_safely(
            dispatcher,
            current_user.id,
            templates.SUBSCRIPTION_PURCHASED,
            current_user.preferred_locale,
            {
                "user_name": current_user.display_name,
                "plan_name": plan.display_name,
                "end_date": templates.format_date(subscription.current_period_end, current_user.preferred_locale),
            },
            to=current_user.email,
        )
    return response


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SubscriptionResponse:
    """Stop renewal at the end of the current period."""
    subscription = await _require_live_subscription(db, current_user)
    try:
        await cancel_subscription(db, subscription)
    except InvalidSubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    response = await _subscription_response(db, current_user)
    await db.commit()

    await send_safely(
        dispatcher,
        current_user.id,
        templates.SUBSCRIPTION_CANCELED,
        current_user.preferred_locale,
        {
            "user_name": current_user.display_name,
            "plan_name": response.entitlements.display_name,
            "end_date": templates.format_date(subscription.current_period_end, current_user.preferred_locale),
        },
        to=current_user.email,
    )
    return response


@router.post("/resume", response_model=SubscriptionResponse)
async def resume(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
) -> SubscriptionResponse:
    """Undo a pending cancellation."""
    subscription = await _require_live_subscription(db, current_user)
    try:
        await resume_subscription(db, subscription)
    except InvalidSubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return await _subscription_response(db, current_user)
