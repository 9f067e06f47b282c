"""Plan catalog — read path over the ``plans`` table plus the default tier definitions."""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.billing.exceptions import FreePlanMissingError, PlanInUseError, PlanNotFoundError
from taskmaster.billing.features import Feature, FeatureSet
from taskmaster.config import settings
from taskmaster.models.plan import Plan
from taskmaster.models.profile import Profile
from taskmaster.models.subscription import Subscription

logger = logging.getLogger(__name__)

FREE_PLAN_NAME = "free"


@dataclass(frozen=True)
class PlanDefinition:
    """Seed definition for a pricing tier."""

    name: str
    display_name: str
    project_limit: int | None  # None = unlimited
    task_limit: int | None  # None = unlimited
    features: FeatureSet
    price_monthly: Decimal
    price_yearly: Decimal
    stripe_price_monthly: str | None = None  # None for free tier
    stripe_price_yearly: str | None = None


DEFAULT_PLANS: dict[str, PlanDefinition] = {
    "free": PlanDefinition(
        name="free",
        display_name="Free",
        project_limit=3,
        task_limit=50,
        features=FeatureSet(),
        price_monthly=Decimal("0.00"),
        price_yearly=Decimal("0.00"),
    ),
    "pro": PlanDefinition(
        name="pro",
        display_name="Pro",
        project_limit=20,
        task_limit=1000,
        features=FeatureSet(
            {
                Feature.TEAM: True,
                Feature.LABELS: True,
                Feature.ATTACHMENTS: True,
            }
        ),
        price_monthly=Decimal("9.99"),
        price_yearly=Decimal("99.00"),
        stripe_price_monthly=settings.stripe_pro_price_monthly or None,
        stripe_price_yearly=settings.stripe_pro_price_yearly or None,
    ),
    "business": PlanDefinition(
        name="business",
        display_name="Business",
        project_limit=None,
        task_limit=None,
        features=FeatureSet({feature: True for feature in Feature}),
        price_monthly=Decimal("29.99"),
        price_yearly=Decimal("299.00"),
        stripe_price_monthly=settings.stripe_business_price_monthly or None,
        stripe_price_yearly=settings.stripe_business_price_yearly or None,
    ),
}


class PlanCatalog:
    """In-memory snapshot of the plan table, indexed by id and name."""

    def __init__(self, plans: Iterable[Plan]) -> None:
        self._by_id: dict[uuid.UUID, Plan] = {}
        self._by_name: dict[str, Plan] = {}
        for plan in plans:
            self._by_id[plan.id] = plan
            self._by_name[plan.name] = plan

    def get(self, plan_id: uuid.UUID | None) -> Plan | None:
        if plan_id is None:
            return None
        return self._by_id.get(plan_id)

    def by_name(self, name: str) -> Plan | None:
        return self._by_name.get(name)

    def active_plans(self) -> list[Plan]:
        return [plan for plan in self._by_id.values() if plan.is_active]

    @property
    def free(self) -> Plan:
        """The active ``free`` plan. Raises ``FreePlanMissingError`` if the catalog has none."""
        plan = self._by_name.get(FREE_PLAN_NAME)
        if plan is None or not plan.is_active:
            raise FreePlanMissingError()
        return plan

    def __len__(self) -> int:
        return len(self._by_id)


async def load_catalog(db: AsyncSession) -> PlanCatalog:
    """Load every plan (active or not) into a catalog snapshot."""
    result = await db.execute(select(Plan))
    return PlanCatalog(result.scalars().all())


async def get_free_plan(db: AsyncSession) -> Plan:
    """Return the active free plan, the downgrade target of every job."""
    result = await db.execute(
        select(Plan).where(Plan.name == FREE_PLAN_NAME, Plan.is_active.is_(True))
    )
    plan = result.scalar_one_or_none()
    if plan is None:
        logger.error("Catalog misconfigured: no active %r plan", FREE_PLAN_NAME)
        raise FreePlanMissingError()
    return plan


async def get_plan_by_name(db: AsyncSession, name: str) -> Plan:
    """Return an active plan by internal name."""
    result = await db.execute(select(Plan).where(Plan.name == name, Plan.is_active.is_(True)))
    plan = result.scalar_one_or_none()
    if plan is None:
        raise PlanNotFoundError(f"Plan {name!r} not found")
    return plan


async def get_plan_by_id(db: AsyncSession, plan_id: uuid.UUID) -> Plan:
    """Return a plan by id, active or not."""
    plan = await db.get(Plan, plan_id)
    if plan is None:
        raise PlanNotFoundError(f"Plan {plan_id} not found")
    return plan


async def list_active_plans(db: AsyncSession) -> list[Plan]:
    """Active plans ordered by monthly price (cheapest first)."""
    result = await db.execute(
        select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.price_monthly, Plan.name)
    )
    return list(result.scalars().all())


async def count_plan_references(db: AsyncSession, plan_id: uuid.UUID) -> int:
    """Number of subscriptions and profiles pointing at the plan."""
    subscriptions = await db.execute(
        select(func.count()).select_from(Subscription).where(Subscription.plan_id == plan_id)
    )
    profiles = await db.execute(
        select(func.count()).select_from(Profile).where(Profile.plan_id == plan_id)
    )
    return subscriptions.scalar_one() + profiles.scalar_one()


async def delete_plan(db: AsyncSession, plan_id: uuid.UUID) -> None:
    """Delete a plan that nobody references. The free plan can never be deleted."""
    plan = await get_plan_by_id(db, plan_id)
    if plan.name == FREE_PLAN_NAME:
        raise PlanInUseError("The free plan is the downgrade target and cannot be deleted")

    references = await count_plan_references(db, plan_id)
    if references:
        raise PlanInUseError(
            f"Plan {plan.name!r} is referenced by {references} subscription(s)/profile(s)"
        )

    await db.delete(plan)
    await db.flush()
    logger.info("Deleted plan %s (%s)", plan.id, plan.name)


async def ensure_default_plans(db: AsyncSession) -> list[Plan]:
    """Insert any missing default plans. Existing rows are left untouched."""
    result = await db.execute(select(Plan.name))
    existing = set(result.scalars().all())

    created: list[Plan] = []
    for definition in DEFAULT_PLANS.values():
        if definition.name in existing:
            continue
        plan = Plan(
            name=definition.name,
            display_name=definition.display_name,
            project_limit=definition.project_limit,
            task_limit=definition.task_limit,
            features=definition.features.to_json(),
            price_monthly=definition.price_monthly,
            price_yearly=definition.price_yearly,
            stripe_price_monthly=definition.stripe_price_monthly,
            stripe_price_yearly=definition.stripe_price_yearly,
            is_active=True,
        )
        db.add(plan)
        created.append(plan)

    if created:
        await db.flush()
        logger.info("Seeded plans: %s", ", ".join(p.name for p in created))
    return created
