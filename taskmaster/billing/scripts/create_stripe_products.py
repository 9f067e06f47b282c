"""Create Stripe products and monthly/yearly prices for the paid plans.

Run once per Stripe account (test or live):
    python -m taskmaster.billing.scripts.create_stripe_products

Outputs price IDs to set in .env:
    STRIPE_PRO_PRICE_MONTHLY=price_xxx
    STRIPE_PRO_PRICE_YEARLY=price_xxx
    STRIPE_BUSINESS_PRICE_MONTHLY=price_xxx
    STRIPE_BUSINESS_PRICE_YEARLY=price_xxx
"""

import asyncio
from decimal import Decimal

from taskmaster.billing.plans import DEFAULT_PLANS
from taskmaster.billing.stripe_client import get_stripe_client
from taskmaster.config import settings


def to_minor_units(amount: Decimal) -> int:
    """9.99 -> 999"""
    return int((amount * 100).quantize(Decimal("1")))


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = get_stripe_client()
    currency = settings.billing_currency.lower()
    env_lines: list[str] = []

    for definition in DEFAULT_PLANS.values():
        if definition.price_monthly <= 0:
            continue

        enabled = ", ".join(sorted(f.value for f in definition.features.enabled()))
        limits = (
            f"{definition.project_limit or 'unlimited'} projects, "
            f"{definition.task_limit or 'unlimited'} tasks"
        )
        product = await client.v1.products.create_async(
            params={
                "name": f"TaskMaster {definition.display_name}",
                "description": f"{limits}; {enabled}",
                "metadata": {"plan": definition.name},
            }
        )
        print(f"Created product: {product.name} ({product.id})")

        for interval, amount in (("month", definition.price_monthly), ("year", definition.price_yearly)):
            price = await client.v1.prices.create_async(
                params={
                    "product": product.id,
                    "unit_amount": to_minor_units(amount),
                    "currency": currency,
                    "recurring": {"interval": interval},
                }
            )
            suffix = "MONTHLY" if interval == "month" else "YEARLY"
            print(f"  Price: {amount} {settings.billing_currency}/{interval} ({price.id})")
            env_lines.append(f"STRIPE_{definition.name.upper()}_PRICE_{suffix}={price.id}")

    print("\n--- Add these to your .env ---")
    for line in env_lines:
        print(line)


if __name__ == "__main__":
    asyncio.run(main())
