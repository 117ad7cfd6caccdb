"""Store Builder Plan Routes

Endpoints:
- GET /api/storebuilder/plans - Active plans (public, for the pricing page)
- GET /api/storebuilder/plans/current - Resolved plan, limits and usage
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import List
import logging

from storebuilder.models.plans import CurrentPlanResponse, PlanResponse, StoreUsage
from storebuilder.models.user import Account
from storebuilder.routes.auth import get_current_account
from storebuilder.services import limit_enforcement, plan_resolver
from storebuilder.services.plan_catalog import plan_catalog
from storebuilder.services.store_service import store_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storebuilder/plans", tags=["Store Builder Plans"])


@router.get("", response_model=List[PlanResponse])
async def list_plans():
    """Active plans ordered by level. No auth required."""
    plans = await plan_catalog.ensure_loaded()
    return [PlanResponse(**p.model_dump()) for p in plans]


@router.get("/current", response_model=CurrentPlanResponse)
async def get_current_plan(account: Account = Depends(get_current_account)):
    """Read-only limit query: degrades to conservative defaults when no plan resolves."""
    try:
        plans = await plan_catalog.ensure_loaded()
        stores = await store_service.load_account_stores(account.account_id)
    except Exception as e:
        logger.error(f"Failed to load plan usage for {account.account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load plan usage")

    plan = plan_resolver.get_user_plan(account, plans)
    active_stores = limit_enforcement.count_active_stores(stores)

    return CurrentPlanResponse(
        plan=PlanResponse(**plan.model_dump()) if plan else None,
        limits=plan_resolver.get_limits_for_user(account, plans),
        using_default_limits=plan is None,
        subscription_status=account.subscription_status.value if account.subscription_status else None,
        subscription_end_date=account.subscription_end_date,
        active_stores=active_stores,
        can_create_store=plan_resolver.can_create_store(account, plans, active_stores),
        stores=[
            StoreUsage(
                store_id=s["store_id"],
                name=s["name"],
                status=s["status"],
                active_products=limit_enforcement.count_active_items(s["products"]),
                active_categories=limit_enforcement.count_active_items(s["categories"]),
            )
            for s in stores
        ],
    )
