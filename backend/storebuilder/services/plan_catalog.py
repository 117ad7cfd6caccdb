"""Plan Catalog Cache

Process-wide mirror of the active plans, ordered by level.

Refreshed:
- when a session starts
- right before registration (to pick up the current free plan id)
- whenever the plans collection changes (change stream, see change_feed)

A failed refresh keeps the previous snapshot: stale plans are preferred
over no plans at all.
"""
import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from database import database
from storebuilder.models.plans import Plan, DEFAULT_PLANS
from storebuilder.services import plan_resolver

logger = logging.getLogger(__name__)


class PlanCatalog:
    """Cached, read-mostly view of the plans collection."""

    def __init__(self):
        self._plans: List[Plan] = []
        self.loaded_at: Optional[datetime] = None
        # One writer at a time; readers use the current snapshot
        self._reload_lock = asyncio.Lock()

    @property
    def plans(self) -> List[Plan]:
        return list(self._plans)

    @property
    def is_loaded(self) -> bool:
        return self.loaded_at is not None

    async def load_plans(self) -> List[Plan]:
        """Fetch active plans ordered by level and replace the snapshot."""
        async with self._reload_lock:
            try:
                db = database.get_db()
                docs = await db.plans.find(
                    {"is_active": True}, {"_id": 0}
                ).sort("level", 1).to_list(length=None)
            except Exception as e:
                logger.error(f"Plan catalog reload failed, keeping {len(self._plans)} cached plan(s): {e}")
                return self.plans

            plans = []
            for doc in docs:
                try:
                    plans.append(Plan(**doc))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed plan {doc.get('plan_id')}: {e}")

            plans.sort(key=lambda p: (p.level, p.plan_id))
            self._plans = plans
            self.loaded_at = datetime.now(timezone.utc)
            logger.info(f"Plan catalog loaded: {len(plans)} active plan(s)")
            return self.plans

    async def ensure_loaded(self) -> List[Plan]:
        if not self.is_loaded:
            return await self.load_plans()
        return self.plans

    def get_free_plan(self) -> Optional[Plan]:
        free = plan_resolver.get_free_plan(self._plans)
        if free is None:
            count = sum(1 for p in self._plans if p.is_free)
            logger.warning(f"Plan catalog has {count} free plan(s); expected exactly one")
        return free

    def get_plan_by_level(self, level: int) -> Optional[Plan]:
        for plan in self._plans:
            if plan.level == level:
                return plan
        return None

    def get_plan_by_id(self, plan_id: str) -> Optional[Plan]:
        for plan in self._plans:
            if plan.plan_id == plan_id:
                return plan
        return None

    def get_plan_by_price_id(self, price_id: Optional[str]) -> Optional[Plan]:
        if not price_id:
            return None
        for plan in self._plans:
            if plan.stripe_price_id == price_id:
                return plan
        return None

    def find_plan(self, plan_ref: Optional[str]) -> Optional[Plan]:
        return plan_resolver.find_plan(self._plans, plan_ref)

    async def seed_default_plans(self) -> int:
        """Insert the default tiers when the plans collection is empty."""
        db = database.get_db()
        if await db.plans.count_documents({}) > 0:
            return 0

        now = datetime.now(timezone.utc)
        for definition in DEFAULT_PLANS:
            plan = Plan(
                **definition,
                stripe_price_id=os.getenv(f"STRIPE_PRICE_{definition['plan_id'].upper()}") or None,
                created_at=now,
                updated_at=now,
            )
            await db.plans.insert_one(plan.model_dump())

        logger.info(f"Seeded {len(DEFAULT_PLANS)} default plans")
        return len(DEFAULT_PLANS)


# Global instance
plan_catalog = PlanCatalog()
