"""Stripe Service - hosted checkout and billing portal for Store Builder plans.

- Checkout: get or create the Stripe customer, then open a subscription
  checkout for the plan's recurring price.
- Portal: only for accounts that already have a Stripe customer. A customer
  is never created just to open the portal.

Metadata carries account_id and plan_id so webhooks can trace the account.
"""
import stripe
import os
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from database import database
from storebuilder.errors import (
    BillingAccountMissingError,
    ExternalServiceError,
)
from storebuilder.models.audit import AuditAction
from storebuilder.models.plans import Plan
from storebuilder.models.user import Account
from storebuilder.services.audit_service import audit_service

logger = logging.getLogger(__name__)

# Prefer STRIPE_SECRET_KEY; fallback STRIPE_API_KEY
stripe.api_key = (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()


def _frontend_url() -> str:
    return os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


class StripeService:
    """Stripe billing operations for Store Builder accounts."""

    def _require_api_key(self):
        if not (stripe.api_key or "").strip():
            raise ExternalServiceError("STRIPE_SECRET_KEY or STRIPE_API_KEY is not set")

    async def get_or_create_customer(self, account: Account) -> str:
        """Return the account's Stripe customer id, creating the customer if needed."""
        if account.stripe_customer_id:
            return account.stripe_customer_id

        db = database.get_db()
        try:
            customer = stripe.Customer.create(
                email=account.email,
                name=account.full_name,
                metadata={
                    "account_id": account.account_id,
                    "product": "storebuilder",
                },
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for {account.account_id}: {e}")
            raise ExternalServiceError(f"customer creation failed: {e}")

        await db.accounts.update_one(
            {"account_id": account.account_id},
            {"$set": {"stripe_customer_id": customer.id, "updated_at": datetime.now(timezone.utc)}},
        )
        await audit_service.log(
            action=AuditAction.BILLING_CUSTOMER_CREATED,
            description="Stripe customer created",
            account_id=account.account_id,
            resource_type="account",
            resource_id=account.account_id,
            details={"stripe_customer_id": customer.id},
        )
        return customer.id

    async def create_checkout_session(
        self,
        account: Account,
        plan: Plan,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a subscription checkout for a paid plan.

        Returns:
            Dict with checkout_url and session_id
        """
        if plan.is_free:
            raise ValueError("The free plan does not require a subscription")
        if not plan.stripe_price_id:
            raise ValueError(f"Plan {plan.name} has no Stripe price configured")
        self._require_api_key()

        customer_id = await self.get_or_create_customer(account)
        base = _frontend_url()

        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
                success_url=success_url or f"{base}/subscription?plan={plan.plan_id}&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=cancel_url or f"{base}/pricing",
                metadata={
                    "account_id": account.account_id,
                    "plan_id": plan.plan_id,
                    "product": "storebuilder",
                },
                subscription_data={
                    "metadata": {
                        "account_id": account.account_id,
                        "plan_id": plan.plan_id,
                    },
                },
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error for account {account.account_id}: {e}")
            raise ExternalServiceError(f"checkout creation failed: {e}")

        logger.info(f"Checkout session created for account {account.account_id}: {session.id} plan={plan.plan_id}")
        return {
            "checkout_url": session.url,
            "session_id": session.id,
            "plan_id": plan.plan_id,
            "plan_name": plan.name,
        }

    async def open_billing_portal(self, account: Account, return_url: Optional[str] = None) -> Dict[str, Any]:
        """Create a billing portal session; requires an existing Stripe customer."""
        if not account.stripe_customer_id:
            raise BillingAccountMissingError()
        self._require_api_key()

        try:
            portal_session = stripe.billing_portal.Session.create(
                customer=account.stripe_customer_id,
                return_url=return_url or f"{_frontend_url()}/subscription",
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe portal error for account {account.account_id}: {e}")
            raise ExternalServiceError(f"portal creation failed: {e}")

        logger.info(f"Billing portal session created for account {account.account_id}")
        return {"portal_url": portal_session.url}


# Global instance
stripe_service = StripeService()
