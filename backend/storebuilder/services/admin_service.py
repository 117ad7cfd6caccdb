"""Store Builder Admin Service

Direct plan and subscription-status changes by an administrator, outside
Stripe. Each change is audited and followed by limit enforcement.

Plan changes:
- paid plan: status active, period starts now and ends in 30 days
- free plan: status canceled, canceled_at now
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List
import logging

from database import database
from storebuilder.errors import NotFoundError
from storebuilder.models.audit import AuditAction
from storebuilder.models.user import Account, AccountResponse, SubscriptionStatus
from storebuilder.services import reconciliation
from storebuilder.services.audit_service import audit_service
from storebuilder.services.plan_catalog import plan_catalog

logger = logging.getLogger(__name__)

MANUAL_PERIOD_DAYS = 30


class AdminService:
    """Administrative account operations."""

    async def _get_account_doc(self, account_id: str) -> Dict[str, Any]:
        db = database.get_db()
        doc = await db.accounts.find_one({"account_id": account_id}, {"_id": 0})
        if not doc:
            raise NotFoundError("account", account_id)
        return doc

    async def list_accounts(self, skip: int = 0, limit: int = 50) -> List[AccountResponse]:
        db = database.get_db()
        docs = await db.accounts.find({}, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
        return [AccountResponse.from_account(Account(**doc)) for doc in docs]

    async def update_user_plan(self, admin: Account, account_id: str, plan_id: str) -> Dict[str, Any]:
        db = database.get_db()
        doc = await self._get_account_doc(account_id)

        await plan_catalog.load_plans()
        plan = plan_catalog.get_plan_by_id(plan_id)
        if plan is None:
            raise NotFoundError("plan", plan_id)

        now = datetime.now(timezone.utc)
        if plan.is_free:
            updates = {
                "plan": plan.plan_id,
                "subscription_status": SubscriptionStatus.CANCELED.value,
                "canceled_at": now,
                "updated_at": now,
            }
        else:
            updates = {
                "plan": plan.plan_id,
                "subscription_status": SubscriptionStatus.ACTIVE.value,
                "subscription_start_date": now,
                "subscription_end_date": now + timedelta(days=MANUAL_PERIOD_DAYS),
                "canceled_at": None,
                "updated_at": now,
            }

        await db.accounts.update_one({"account_id": account_id}, {"$set": updates})
        await audit_service.log(
            action=AuditAction.PLAN_CHANGED,
            description=f"Plan set to {plan.name} by admin",
            account_id=account_id,
            actor_id=admin.account_id,
            actor_role=admin.role.value,
            resource_type="account",
            resource_id=account_id,
            details={"old_plan": doc.get("plan"), "new_plan": plan.plan_id},
        )

        summary = await reconciliation.enforce_account_limits(account_id, plan, reason="admin_plan_change")
        logger.info(f"Admin {admin.account_id} moved {account_id} to plan {plan.plan_id}")
        return {
            "account_id": account_id,
            "plan_id": plan.plan_id,
            "subscription_status": updates["subscription_status"],
            "enforcement": summary["actions"],
        }

    async def update_user_status(
        self,
        admin: Account,
        account_id: str,
        status: SubscriptionStatus,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        db = database.get_db()
        doc = await self._get_account_doc(account_id)

        now = datetime.now(timezone.utc)
        updates: Dict[str, Any] = {"subscription_status": status.value, "updated_at": now}
        if end_date is not None:
            updates["subscription_end_date"] = end_date
        if status == SubscriptionStatus.CANCELED:
            updates["canceled_at"] = now
        if status != SubscriptionStatus.ACTIVE:
            # Canceled and expired accounts fall back to the free plan
            await plan_catalog.ensure_loaded()
            free_plan = plan_catalog.get_free_plan()
            if free_plan:
                updates["plan"] = free_plan.plan_id

        await db.accounts.update_one({"account_id": account_id}, {"$set": updates})
        await audit_service.log(
            action=AuditAction.SUBSCRIPTION_STATUS_CHANGED,
            description=f"Subscription status set to {status.value} by admin",
            account_id=account_id,
            actor_id=admin.account_id,
            actor_role=admin.role.value,
            resource_type="account",
            resource_id=account_id,
            details={"old_status": doc.get("subscription_status"), "new_status": status.value},
        )

        summary = await reconciliation.reconcile_account(account_id, reason="admin_status_change")
        return {
            "account_id": account_id,
            "subscription_status": status.value,
            "enforcement": summary["actions"] if summary else [],
        }


# Global instance
admin_service = AdminService()
