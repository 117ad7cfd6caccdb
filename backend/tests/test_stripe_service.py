"""
Tests for Stripe checkout and billing portal sessions.
"""
from unittest.mock import MagicMock, patch

import pytest
import stripe

from storebuilder.errors import BillingAccountMissingError, ExternalServiceError, RETRY_LATER_MESSAGE
from storebuilder.models.user import Account
from storebuilder.services.stripe_service import StripeService

SERVICE = "storebuilder.services.stripe_service"


def _account(**overrides):
    data = {"account_id": "ACC-1", "email": "owner@example.com", "full_name": "Owner", "password_hash": "x",
            "plan": "free"}
    data.update(overrides)
    return Account(**data)


@pytest.fixture
def api_key():
    with patch(f"{SERVICE}.stripe.api_key", "sk_test_123"):
        yield


class TestBillingPortal:

    @pytest.mark.asyncio
    async def test_no_customer_raises_without_calling_stripe(self, fake_db, api_key):
        with patch(f"{SERVICE}.stripe.billing_portal.Session.create") as create, \
             patch(f"{SERVICE}.stripe.Customer.create") as create_customer:
            with pytest.raises(BillingAccountMissingError):
                await StripeService().open_billing_portal(_account())
        create.assert_not_called()
        create_customer.assert_not_called()
        assert fake_db.accounts.writes == 0

    @pytest.mark.asyncio
    async def test_existing_customer_gets_portal_url(self, fake_db, api_key):
        with patch(f"{SERVICE}.stripe.billing_portal.Session.create",
                   return_value=MagicMock(url="https://billing.stripe.com/p/session_1")) as create:
            result = await StripeService().open_billing_portal(
                _account(stripe_customer_id="cus_123"), return_url="https://app.example.com/back",
            )
        assert result == {"portal_url": "https://billing.stripe.com/p/session_1"}
        assert create.call_args[1] == {"customer": "cus_123", "return_url": "https://app.example.com/back"}

    @pytest.mark.asyncio
    async def test_stripe_failure_surfaces_generic_message(self, fake_db, api_key):
        with patch(f"{SERVICE}.stripe.billing_portal.Session.create",
                   side_effect=stripe.APIConnectionError("connection refused")):
            with pytest.raises(ExternalServiceError) as exc:
                await StripeService().open_billing_portal(_account(stripe_customer_id="cus_123"))
        assert exc.value.message == RETRY_LATER_MESSAGE
        assert "connection refused" not in exc.value.message


class TestCheckout:

    @pytest.mark.asyncio
    async def test_free_plan_rejected(self, fake_db, plans, api_key):
        with pytest.raises(ValueError):
            await StripeService().create_checkout_session(_account(), plans[0])

    @pytest.mark.asyncio
    async def test_plan_without_price_rejected(self, fake_db, plans, api_key):
        with pytest.raises(ValueError):
            await StripeService().create_checkout_session(_account(), plans[1])

    @pytest.mark.asyncio
    async def test_missing_api_key(self, fake_db, plans):
        plan = plans[2].model_copy(update={"stripe_price_id": "price_pro"})
        with patch(f"{SERVICE}.stripe.api_key", ""):
            with pytest.raises(ExternalServiceError):
                await StripeService().create_checkout_session(_account(), plan)

    @pytest.mark.asyncio
    async def test_creates_customer_then_session(self, fake_db, plans, api_key):
        fake_db.accounts.seed(_account().model_dump())
        plan = plans[2].model_copy(update={"stripe_price_id": "price_pro"})

        with patch(f"{SERVICE}.stripe.Customer.create", return_value=MagicMock(id="cus_new")), \
             patch(f"{SERVICE}.stripe.checkout.Session.create",
                   return_value=MagicMock(id="cs_1", url="https://checkout.stripe.com/c/cs_1")) as create:
            result = await StripeService().create_checkout_session(_account(), plan)

        assert result["checkout_url"] == "https://checkout.stripe.com/c/cs_1"
        assert result["plan_id"] == "professional"
        kwargs = create.call_args[1]
        assert kwargs["customer"] == "cus_new"
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_pro", "quantity": 1}]
        assert kwargs["subscription_data"]["metadata"] == {"account_id": "ACC-1", "plan_id": "professional"}
        assert fake_db.accounts.docs[0]["stripe_customer_id"] == "cus_new"

    @pytest.mark.asyncio
    async def test_existing_customer_reused(self, fake_db, plans, api_key):
        plan = plans[3].model_copy(update={"stripe_price_id": "price_biz"})
        with patch(f"{SERVICE}.stripe.Customer.create") as create_customer, \
             patch(f"{SERVICE}.stripe.checkout.Session.create",
                   return_value=MagicMock(id="cs_2", url="https://checkout.stripe.com/c/cs_2")):
            await StripeService().create_checkout_session(_account(stripe_customer_id="cus_123"), plan)
        create_customer.assert_not_called()
