"""Entitlement resolution — which plan and features a user currently has.

``resolve`` is pure: it only reads the objects it is given, so it can be called
from request handlers, jobs, or tests without a database.
"""

import uuid
from dataclasses import dataclass

from taskmaster.billing.features import Feature, FeatureSet
from taskmaster.billing.plans import PlanCatalog
from taskmaster.models.plan import Plan
from taskmaster.models.profile import Profile
from taskmaster.models.subscription import STATUS_CANCELED, Subscription

SOURCE_SUBSCRIPTION = "subscription"
SOURCE_PROFILE = "profile"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class EffectivePlan:
    """The plan, limits, and features granted to a user right now."""

    plan_id: uuid.UUID
    name: str
    display_name: str
    project_limit: int | None  # None = unlimited
    task_limit: int | None  # None = unlimited
    features: FeatureSet
    source: str

    def has(self, feature: Feature) -> bool:
        return self.features[feature]


def _effective(plan: Plan, source: str) -> EffectivePlan:
    return EffectivePlan(
        plan_id=plan.id,
        name=plan.name,
        display_name=plan.display_name,
        project_limit=plan.project_limit,
        task_limit=plan.task_limit,
        features=FeatureSet.from_json(plan.features),
        source=source,
    )


def resolve(
    profile: Profile,
    subscription: Subscription | None,
    catalog: PlanCatalog,
) -> EffectivePlan:
    """Resolve the effective plan for a profile.

    The subscription row wins over ``profile.plan_id`` because the profile is
    only a mirror that may lag behind a partially applied job. A canceled
    subscription grants the free plan. Unknown or inactive plans fall back to
    the catalog's ``free`` entry.

    Raises:
        FreePlanMissingError: If a fallback is needed and the catalog has no free plan.
        UnknownFeatureError: If the resolved plan stores an unknown feature key.
    """
    if subscription is not None:
        if subscription.status == STATUS_CANCELED:
            return _effective(catalog.free, SOURCE_FALLBACK)
        candidate_id = subscription.plan_id
        source = SOURCE_SUBSCRIPTION
    else:
        candidate_id = profile.plan_id
        source = SOURCE_PROFILE

    plan = catalog.get(candidate_id)
    if plan is None or not plan.is_active:
        return _effective(catalog.free, SOURCE_FALLBACK)
    return _effective(plan, source)
