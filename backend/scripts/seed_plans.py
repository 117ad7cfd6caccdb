"""
Idempotent plan catalog seed.
Inserts the default plans (free, entrepreneur, professional, business) only when
the plans collection is empty. Stripe price ids come from STRIPE_PRICE_<PLAN> env vars.

Usage (from backend/):
  python -m scripts.seed_plans
"""
import asyncio
import sys
from pathlib import Path

# Ensure backend root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


async def main():
    from database import database
    from storebuilder.services.plan_catalog import plan_catalog

    await database.connect()
    try:
        seeded = await plan_catalog.seed_default_plans()
        plans = await plan_catalog.load_plans()
        print(f"Seeded {seeded} plan(s); catalog now has {len(plans)} active plan(s)")
        for plan in plans:
            print(f"  {plan.plan_id} {plan.name} level={plan.level} price_id={plan.stripe_price_id or '(none)'}")
    finally:
        await database.close()


if __name__ == "__main__":
    asyncio.run(main())
