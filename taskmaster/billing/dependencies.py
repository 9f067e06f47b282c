"""Plan gating dependencies — enforce features and limits from the caller's effective plan."""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.auth.dependencies import get_current_user
from taskmaster.billing.entitlements import EffectivePlan
from taskmaster.billing.exceptions import FreePlanMissingError
from taskmaster.billing.features import Feature
from taskmaster.database import get_db
from taskmaster.models.profile import Profile
from taskmaster.services.subscription_service import get_profile_entitlements

logger = logging.getLogger(__name__)


async def get_entitlements(
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_user),
) -> EffectivePlan:
    """Resolve the caller's effective plan."""
    try:
        return await get_profile_entitlements(db, profile)
    except FreePlanMissingError as e:
        logger.error("Cannot resolve entitlements for %s: %s", profile.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        ) from e


def require_feature(feature: Feature):
    """Build a dependency that raises 402 unless the caller's plan grants ``feature``.

    Usage::

        @router.post("/labels", dependencies=[Depends(require_feature(Feature.LABELS))])
    """

    async def _check(plan: EffectivePlan = Depends(get_entitlements)) -> EffectivePlan:
        if not plan.has(feature):
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail={
                    "message": f"The {plan.display_name} plan does not include {feature.value}. Upgrade your plan to use it.",
                    "feature": feature.value,
                    "plan": plan.name,
                },
            )
        return plan

    return _check


def check_limit(plan: EffectivePlan, resource: str, current_count: int) -> None:
    """Raise 402 if ``current_count`` has reached the plan's limit for ``resource``.

    ``resource`` is ``"projects"`` or ``"tasks"``. A ``None`` limit means unlimited.
    """
    limits = {"projects": plan.project_limit, "tasks": plan.task_limit}
    if resource not in limits:
        raise ValueError(f"Unknown limited resource: {resource!r}")
    limit = limits[resource]
    if limit is None:
        return
    if current_count >= limit:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": f"{resource.capitalize()} limit reached ({current_count}/{limit}). Upgrade your plan for more.",
                "limit": limit,
                "current": current_count,
                "plan": plan.name,
            },
        )
