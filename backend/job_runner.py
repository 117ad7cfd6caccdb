"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and admin (manual run).
Each run_* returns a dict with "message" (and optionally "count") for admin toast.
"""
import logging

logger = logging.getLogger(__name__)


async def run_subscription_expiry_sweep():
    try:
        from storebuilder.services.reconciliation import expire_lapsed_subscriptions
        count = await expire_lapsed_subscriptions()
        logger.info(f"Subscription expiry sweep completed: {count} subscription(s) expired")
        return {"message": f"Subscriptions expired: {count}", "count": count}
    except Exception as e:
        logger.error(f"Subscription expiry sweep failed: {e}")
        raise


async def run_plan_catalog_refresh():
    try:
        from storebuilder.services.plan_catalog import plan_catalog
        plans = await plan_catalog.load_plans()
        return {"message": f"Plan catalog refreshed: {len(plans)} plan(s)", "count": len(plans)}
    except Exception as e:
        logger.error(f"Plan catalog refresh failed: {e}")
        raise


async def run_account_reconciliation(account_id: str):
    try:
        from storebuilder.services.reconciliation import reconcile_account
        summary = await reconcile_account(account_id, reason="admin_run")
        actions = summary["actions"] if summary else []
        count = sum(a.get("count", 0) for a in actions)
        logger.info(f"Account reconciliation completed for {account_id}: {count} item(s) changed")
        return {"message": f"Items suspended/deactivated: {count}", "count": count, "actions": actions}
    except Exception as e:
        logger.error(f"Account reconciliation failed for {account_id}: {e}")
        raise


JOB_RUNNERS = {
    "subscription_expiry_sweep": run_subscription_expiry_sweep,
    "plan_catalog_refresh": run_plan_catalog_refresh,
}
