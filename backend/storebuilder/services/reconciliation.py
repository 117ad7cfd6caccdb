"""Plan limit reconciliation - apply enforcement decisions to stored resources.

Runs after:
- Stripe subscription created/updated/deleted
- admin plan or status changes
- session reconciliation detecting a plan/status drift
- the subscription expiry sweep

Every write is a read-modify-write: the collection is re-read right before
the status update and the decision recomputed on the fresh rows, and the
update itself only matches rows that are still active. Running it twice with
no change in between performs no writes the second time.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from database import database
from storebuilder.models.audit import AuditAction, AuditSeverity
from storebuilder.models.plans import Plan
from storebuilder.models.stores import DeactivationReason
from storebuilder.models.user import Account, SubscriptionStatus
from storebuilder.services import limit_enforcement
from storebuilder.services.audit_service import audit_service
from storebuilder.services.limit_enforcement import EnforcementDecision, as_utc
from storebuilder.services.plan_catalog import plan_catalog
from storebuilder.services import plan_resolver

logger = logging.getLogger(__name__)

PLAN_LIMIT_REASON = DeactivationReason.PLAN_LIMIT.value


async def _apply_decision(
    collection,
    scope: Dict,
    id_field: str,
    decide: Callable[[List[Dict]], EnforcementDecision],
    active_filter: Dict,
    deactivate: Dict,
) -> EnforcementDecision:
    docs = await collection.find(scope, {"_id": 0}).to_list(length=None)
    decision = decide(docs)
    if not decision.changed:
        return decision

    # Re-check on fresh rows: a concurrent manual action may already have
    # changed which items are active.
    fresh = await collection.find(scope, {"_id": 0}).to_list(length=None)
    decision = decide(fresh)
    if not decision.changed:
        return decision

    await collection.update_many(
        {id_field: {"$in": decision.deactivated}, **active_filter},
        {"$set": deactivate},
    )
    return decision


async def suspend_excess_stores(
    account_id: str,
    plan: Plan,
    keep_store_ids: Optional[Iterable[str]] = None,
) -> EnforcementDecision:
    db = database.get_db()
    keep = list(keep_store_ids) if keep_store_ids is not None else None
    now = datetime.now(timezone.utc)
    return await _apply_decision(
        db.stores,
        {"account_id": account_id, "status": {"$ne": "archived"}},
        "store_id",
        lambda docs: limit_enforcement.enforce_store_limit(docs, plan.limits, keep),
        {"status": "active"},
        {"status": "suspended", "suspended_reason": PLAN_LIMIT_REASON if keep is None else DeactivationReason.OWNER.value,
         "suspended_at": now, "updated_at": now},
    )


async def deactivate_excess_products(store_id: str, plan: Plan) -> EnforcementDecision:
    db = database.get_db()
    now = datetime.now(timezone.utc)
    return await _apply_decision(
        db.products,
        {"store_id": store_id},
        "product_id",
        lambda docs: limit_enforcement.enforce_product_limit(docs, plan.limits),
        {"is_active": True},
        {"is_active": False, "deactivated_reason": PLAN_LIMIT_REASON, "updated_at": now},
    )


async def deactivate_excess_categories(store_id: str, plan: Plan) -> EnforcementDecision:
    db = database.get_db()
    now = datetime.now(timezone.utc)
    return await _apply_decision(
        db.categories,
        {"store_id": store_id},
        "category_id",
        lambda docs: limit_enforcement.enforce_category_limit(docs, plan.limits),
        {"is_active": True},
        {"is_active": False, "deactivated_reason": PLAN_LIMIT_REASON, "updated_at": now},
    )


async def enforce_account_limits(
    account_id: str,
    plan: Plan,
    reason: str,
    keep_store_ids: Optional[Iterable[str]] = None,
) -> dict:
    """
    Bring an account's stores, and every store's products and categories,
    back under the plan's ceilings.

    Returns a summary with an "actions" list (empty when nothing changed).
    """
    db = database.get_db()

    summary = {
        "account_id": account_id,
        "plan_id": plan.plan_id,
        "plan_name": plan.name,
        "reason": reason,
        "actions": [],
    }

    store_decision = await suspend_excess_stores(account_id, plan, keep_store_ids)
    if store_decision.changed:
        summary["actions"].append({
            "resource": "stores",
            "action": "suspended",
            "ids": store_decision.deactivated,
            "count": len(store_decision.deactivated),
        })

    stores = await db.stores.find(
        {"account_id": account_id, "status": {"$ne": "archived"}},
        {"_id": 0, "store_id": 1},
    ).to_list(length=None)

    for store in stores:
        store_id = store["store_id"]
        product_decision = await deactivate_excess_products(store_id, plan)
        if product_decision.changed:
            summary["actions"].append({
                "resource": "products",
                "action": "deactivated",
                "store_id": store_id,
                "ids": product_decision.deactivated,
                "count": len(product_decision.deactivated),
            })
        category_decision = await deactivate_excess_categories(store_id, plan)
        if category_decision.changed:
            summary["actions"].append({
                "resource": "categories",
                "action": "deactivated",
                "store_id": store_id,
                "ids": category_decision.deactivated,
                "count": len(category_decision.deactivated),
            })

    if summary["actions"]:
        logger.info(
            "PLAN_RECONCILIATION account_id=%s plan=%s reason=%s actions=%s",
            account_id, plan.plan_id, reason,
            [(a["resource"], a["count"]) for a in summary["actions"]],
        )
        await audit_service.log(
            action=AuditAction.PLAN_LIMIT_ENFORCED,
            description=f"Plan limits enforced for {plan.name}",
            account_id=account_id,
            resource_type="account",
            resource_id=account_id,
            details=summary,
        )

    return summary


def is_subscription_lapsed(account: Account, now: Optional[datetime] = None) -> bool:
    """Active subscription whose end date has passed."""
    if account.subscription_status != SubscriptionStatus.ACTIVE:
        return False
    if account.subscription_end_date is None:
        return False
    now = now or datetime.now(timezone.utc)
    return as_utc(account.subscription_end_date) < now


async def expire_subscription(account: Account) -> Account:
    """Move a lapsed subscription to expired on the free plan.

    Only matches rows still marked active, so a renewal that landed in the
    meantime is left alone.
    """
    db = database.get_db()
    free_plan = plan_catalog.get_free_plan()
    now = datetime.now(timezone.utc)

    updates = {"subscription_status": SubscriptionStatus.EXPIRED.value, "updated_at": now}
    if free_plan:
        updates["plan"] = free_plan.plan_id

    result = await db.accounts.update_one(
        {"account_id": account.account_id, "subscription_status": SubscriptionStatus.ACTIVE.value},
        {"$set": updates},
    )
    if not result.modified_count:
        return account

    logger.info(
        "SUBSCRIPTION_EXPIRED account_id=%s old_plan=%s end_date=%s",
        account.account_id, account.plan, account.subscription_end_date,
    )
    await audit_service.log(
        action=AuditAction.SUBSCRIPTION_EXPIRED,
        description="Subscription end date passed; moved to the free plan",
        account_id=account.account_id,
        resource_type="account",
        resource_id=account.account_id,
        details={"old_plan": account.plan, "new_plan": updates.get("plan")},
    )
    return account.model_copy(update={
        "subscription_status": SubscriptionStatus.EXPIRED,
        "plan": updates.get("plan", account.plan),
        "updated_at": now,
    })


async def correct_unresolvable_plan(account: Account) -> Account:
    """Persist the free plan id onto an account whose plan matches nothing."""
    plans = plan_catalog.plans
    if plan_resolver.plan_is_resolvable(account, plans):
        return account
    free_plan = plan_resolver.get_free_plan(plans)
    if free_plan is None:
        return account

    db = database.get_db()
    await db.accounts.update_one(
        {"account_id": account.account_id, "plan": account.plan},
        {"$set": {"plan": free_plan.plan_id, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.warning(
        "Account %s referenced unknown plan %r; corrected to %s",
        account.account_id, account.plan, free_plan.plan_id,
    )
    await audit_service.log(
        action=AuditAction.PLAN_CORRECTED,
        description="Unknown plan replaced by the free plan",
        account_id=account.account_id,
        resource_type="account",
        resource_id=account.account_id,
        details={"old_plan": account.plan, "new_plan": free_plan.plan_id},
        severity=AuditSeverity.WARNING,
    )
    return account.model_copy(update={"plan": free_plan.plan_id})


async def reconcile_account(account_id: str, reason: str) -> Optional[dict]:
    """Server-side reconciliation of one account: expiry, plan correction, enforcement."""
    db = database.get_db()
    await plan_catalog.ensure_loaded()

    doc = await db.accounts.find_one({"account_id": account_id}, {"_id": 0})
    if not doc:
        logger.warning(f"Reconciliation skipped: account {account_id} not found")
        return None

    account = Account(**doc)
    if is_subscription_lapsed(account):
        account = await expire_subscription(account)
    account = await correct_unresolvable_plan(account)

    plan = plan_resolver.get_user_plan(account, plan_catalog.plans)
    if plan is None:
        logger.error(f"Reconciliation skipped for {account_id}: no plan resolves and no free plan exists")
        return None

    return await enforce_account_limits(account_id, plan, reason)


async def expire_lapsed_subscriptions() -> int:
    """Sweep every account whose active subscription has passed its end date."""
    db = database.get_db()
    await plan_catalog.ensure_loaded()
    now = datetime.now(timezone.utc)

    docs = await db.accounts.find(
        {"subscription_status": SubscriptionStatus.ACTIVE.value, "subscription_end_date": {"$lt": now}},
        {"_id": 0},
    ).to_list(length=None)

    expired = 0
    for doc in docs:
        account = Account(**doc)
        if not is_subscription_lapsed(account, now):
            continue
        try:
            updated = await expire_subscription(account)
            if updated.subscription_status == SubscriptionStatus.EXPIRED:
                expired += 1
                await reconcile_account(account.account_id, reason="subscription_expired")
        except Exception as e:
            logger.error(f"Expiry sweep failed for account {account.account_id}: {e}")
    return expired
