"""Seed the plan catalog with the free, pro and business tiers.

Idempotent: existing plans are left untouched, so it is safe to run on every deploy.

    python -m scripts.seed_plans
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from taskmaster.billing.plans import ensure_default_plans, list_active_plans
from taskmaster.database import async_session_factory, engine


async def seed() -> None:
    async with async_session_factory() as session:
        created = await ensure_default_plans(session)
        await session.commit()

        if created:
            print(f"✅ Created {len(created)} plan(s): {', '.join(p.name for p in created)}")
        else:
            print("ℹ️  All default plans already exist")

        print()
        print("=" * 60)
        print("📊 Active plans")
        print("=" * 60)
        for plan in await list_active_plans(session):
            monthly_price = plan.stripe_price_monthly or "no Stripe price"
            print(f"   {plan.name:<10} {plan.price_monthly:>7}/mo  {monthly_price}")
        print("=" * 60)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
