"""Stripe Webhook Service - subscription and invoice events for Store Builder.

Key Principles:
1. Signature verification is mandatory; without STRIPE_WEBHOOK_SECRET every
   event is rejected
2. Idempotency: each event id is applied at most once (stripe_events)
3. Plan derivation: from the subscription price id, then metadata plan_id
4. Every plan change is followed by limit enforcement

Events Handled:
- checkout.session.completed       attach the Stripe customer to the account
- customer.subscription.created    plan + status active + subscription id
- customer.subscription.updated    same as created
- customer.subscription.deleted    free plan + status canceled
- invoice.payment_succeeded / invoice.paid   record payment outcome only
- invoice.payment_failed                     record payment outcome only
"""
import stripe
import os
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Tuple

from database import database
from storebuilder.errors import NoFreePlanError
from storebuilder.models.audit import AuditAction, AuditSeverity
from storebuilder.models.plans import Plan
from storebuilder.models.user import SubscriptionStatus
from storebuilder.services import reconciliation
from storebuilder.services.audit_service import audit_service
from storebuilder.services.plan_catalog import plan_catalog

logger = logging.getLogger(__name__)

# Stripe statuses that keep paid access
ACCESS_STATUSES = {"active", "trialing", "past_due"}
# Stripe statuses that end the subscription
ENDED_STATUSES = {"canceled", "unpaid", "incomplete_expired"}


def _get_webhook_secret() -> str:
    return (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()


def _from_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _subscription_price_id(subscription: Dict) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


def _subscription_period(subscription: Dict) -> Tuple[Optional[datetime], Optional[datetime]]:
    # Newer API versions report the period on the subscription item
    items = (subscription.get("items") or {}).get("data") or []
    first = items[0] if items else {}
    start = subscription.get("current_period_start") or first.get("current_period_start")
    end = subscription.get("current_period_end") or first.get("current_period_end")
    return _from_timestamp(start), _from_timestamp(end)


class StripeWebhookService:
    """Webhook handler with idempotency."""

    # =========================================================================
    # Event Processing Entry Point
    # =========================================================================

    async def process_webhook(
        self,
        payload: bytes,
        signature: str
    ) -> Tuple[bool, str, Optional[Dict]]:
        """
        Verify, record and apply one webhook delivery.

        Returns:
            (success, message, details). success is False only for
            deliveries that were rejected before any state change.
        """
        webhook_secret = _get_webhook_secret()
        if not webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not set - rejecting webhook")
            return False, "Webhook secret not configured", None

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed: %s", e)
            return False, "Invalid signature", None
        except ValueError as e:
            logger.error(f"Webhook parse error: {e}")
            return False, "Invalid payload", None

        event_id = event.get("id")
        event_type = event.get("type")
        logger.info("WEBHOOK_RECEIVED event_id=%s event_type=%s", event_id, event_type)

        db = database.get_db()
        existing = await db.stripe_events.find_one({"event_id": event_id}, {"_id": 0})
        if existing and existing.get("status") == "PROCESSED":
            logger.info(f"Event {event_id} already processed - skipping")
            return True, "Already processed", {"event_id": event_id}

        event_record = {
            "event_id": event_id,
            "type": event_type,
            "created": datetime.now(timezone.utc),
            "processed_at": None,
            "status": "PROCESSING",
            "error": None,
            "related_account_id": None,
        }
        if existing:
            await db.stripe_events.update_one({"event_id": event_id}, {"$set": event_record})
        else:
            try:
                await db.stripe_events.insert_one(event_record)
            except Exception as insert_err:
                if "duplicate key" in str(insert_err).lower() or "E11000" in str(insert_err):
                    logger.info(f"Event {event_id} duplicate insert (race) - skipping")
                    return True, "Already processed", {"event_id": event_id}
                raise

        try:
            result = await self._handle_event(event)
        except Exception as e:
            logger.error(
                "WEBHOOK_PROCESSING_FAILED event_id=%s event_type=%s error=%s",
                event_id, event_type, str(e),
            )
            await db.stripe_events.update_one(
                {"event_id": event_id},
                {"$set": {"status": "FAILED", "processed_at": datetime.now(timezone.utc), "error": str(e)}},
            )
            await audit_service.log(
                action=AuditAction.STRIPE_EVENT_FAILED,
                description=f"Stripe event {event_type} failed",
                details={"event_id": event_id, "event_type": event_type, "error": str(e)},
                severity=AuditSeverity.ERROR,
            )
            # Acknowledge anyway: the failure is recorded and retries would not help
            return True, "Event logged with error", {"error": str(e), "event_id": event_id}

        await db.stripe_events.update_one(
            {"event_id": event_id},
            {"$set": {
                "status": "PROCESSED",
                "processed_at": datetime.now(timezone.utc),
                "related_account_id": result.get("account_id"),
            }},
        )
        logger.info(
            "WEBHOOK_PROCESSED_OK event_id=%s event_type=%s account_id=%s",
            event_id, event_type, result.get("account_id"),
        )
        return True, "Processed", result

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_event(self, event: Dict) -> Dict:
        event_type = event.get("type")
        data = event.get("data", {}).get("object", {})

        handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_change,
            "customer.subscription.updated": self._handle_subscription_change,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
            "invoice.paid": self._handle_payment_succeeded,
            "invoice.payment_failed": self._handle_payment_failed,
        }

        handler = handlers.get(event_type)
        if handler:
            return await handler(data)

        logger.info(f"Ignoring unhandled event type: {event_type}")
        return {"handled": False, "event_type": event_type}

    async def _find_account(self, obj: Dict) -> Optional[Dict]:
        """Locate the account by metadata account_id, then by Stripe customer id."""
        db = database.get_db()
        account_id = (obj.get("metadata") or {}).get("account_id")
        if account_id:
            account = await db.accounts.find_one({"account_id": account_id}, {"_id": 0})
            if account:
                return account
        customer_id = obj.get("customer")
        if customer_id:
            return await db.accounts.find_one({"stripe_customer_id": customer_id}, {"_id": 0})
        return None

    async def _handle_checkout_completed(self, session: Dict) -> Dict:
        db = database.get_db()
        if session.get("mode") != "subscription":
            return {"handled": False, "mode": session.get("mode")}

        account = await self._find_account(session)
        if not account:
            raise ValueError(f"No account for checkout session {session.get('id')}")

        customer_id = session.get("customer")
        if customer_id and account.get("stripe_customer_id") != customer_id:
            await db.accounts.update_one(
                {"account_id": account["account_id"]},
                {"$set": {"stripe_customer_id": customer_id, "updated_at": datetime.now(timezone.utc)}},
            )
        return {"handled": True, "account_id": account["account_id"], "customer_id": customer_id}

    async def _handle_subscription_change(self, subscription: Dict) -> Dict:
        status = subscription.get("status")
        if status in ENDED_STATUSES:
            return await self._handle_subscription_deleted(subscription)
        if status not in ACCESS_STATUSES:
            logger.info(f"Subscription {subscription.get('id')} in status {status} - waiting for payment")
            return {"handled": False, "subscription_status": status}

        account = await self._find_account(subscription)
        if not account:
            raise ValueError(f"No account for subscription {subscription.get('id')}")

        await plan_catalog.ensure_loaded()
        price_id = _subscription_price_id(subscription)
        plan = plan_catalog.get_plan_by_price_id(price_id) or plan_catalog.find_plan(
            (subscription.get("metadata") or {}).get("plan_id")
        )
        if plan is None:
            raise ValueError(f"No plan for price {price_id}")

        start, end = _subscription_period(subscription)
        updates = {
            "plan": plan.plan_id,
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "subscription_id": subscription.get("id"),
            "canceled_at": None,
            "updated_at": datetime.now(timezone.utc),
        }
        if subscription.get("customer"):
            updates["stripe_customer_id"] = subscription["customer"]
        if start:
            updates["subscription_start_date"] = start
        if end:
            updates["subscription_end_date"] = end

        return await self._apply_plan_change(account, plan, updates, reason="stripe_subscription_updated")

    async def _handle_subscription_deleted(self, subscription: Dict) -> Dict:
        account = await self._find_account(subscription)
        if not account:
            raise ValueError(f"No account for subscription {subscription.get('id')}")

        await plan_catalog.ensure_loaded()
        free_plan = plan_catalog.get_free_plan()
        if free_plan is None:
            raise NoFreePlanError()

        now = datetime.now(timezone.utc)
        updates = {
            "plan": free_plan.plan_id,
            "subscription_status": SubscriptionStatus.CANCELED.value,
            "canceled_at": now,
            "updated_at": now,
        }
        return await self._apply_plan_change(account, free_plan, updates, reason="stripe_subscription_deleted")

    async def _apply_plan_change(self, account: Dict, plan: Plan, updates: Dict, reason: str) -> Dict:
        db = database.get_db()
        account_id = account["account_id"]
        old_plan = account.get("plan")
        old_status = account.get("subscription_status")

        await db.accounts.update_one({"account_id": account_id}, {"$set": updates})

        if old_plan != plan.plan_id or old_status != updates["subscription_status"]:
            await audit_service.log(
                action=AuditAction.PLAN_CHANGED,
                description=f"Plan set to {plan.name} ({updates['subscription_status']}) by Stripe",
                account_id=account_id,
                resource_type="account",
                resource_id=account_id,
                details={
                    "old_plan": old_plan,
                    "new_plan": plan.plan_id,
                    "old_status": old_status,
                    "new_status": updates["subscription_status"],
                    "reason": reason,
                },
            )

        summary = await reconciliation.enforce_account_limits(account_id, plan, reason=reason)
        return {
            "handled": True,
            "account_id": account_id,
            "plan_id": plan.plan_id,
            "subscription_status": updates["subscription_status"],
            "enforcement": summary["actions"],
        }

    async def _record_payment(self, invoice: Dict, outcome: str) -> Dict:
        db = database.get_db()
        account = await self._find_account(invoice)
        if not account:
            logger.warning(f"Invoice {invoice.get('id')} for unknown customer {invoice.get('customer')}")
            return {"handled": False, "invoice_id": invoice.get("id")}

        await db.accounts.update_one(
            {"account_id": account["account_id"]},
            {"$set": {"last_payment_status": outcome, "last_payment_at": datetime.now(timezone.utc)}},
        )
        await audit_service.log(
            action=AuditAction.PAYMENT_RECORDED,
            description=f"Invoice payment {outcome}",
            account_id=account["account_id"],
            resource_type="invoice",
            resource_id=invoice.get("id"),
            details={"amount_paid": invoice.get("amount_paid"), "currency": invoice.get("currency")},
            severity=AuditSeverity.WARNING if outcome == "failed" else AuditSeverity.INFO,
        )
        return {"handled": True, "account_id": account["account_id"], "payment_status": outcome}

    async def _handle_payment_succeeded(self, invoice: Dict) -> Dict:
        return await self._record_payment(invoice, "succeeded")

    async def _handle_payment_failed(self, invoice: Dict) -> Dict:
        return await self._record_payment(invoice, "failed")


# Global instance
stripe_webhook_service = StripeWebhookService()
