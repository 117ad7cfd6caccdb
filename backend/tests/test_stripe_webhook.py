"""
Tests for Stripe webhook processing: signature handling, idempotency,
plan derivation and limit enforcement after subscription changes.
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import stripe

from storebuilder.services.stripe_webhook_service import StripeWebhookService

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
CONSTRUCT_EVENT = "storebuilder.services.stripe_webhook_service.stripe.Webhook.construct_event"


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")


@pytest.fixture
def priced_db(seeded_db):
    """Default plans with Stripe prices on the paid tiers."""
    from storebuilder.services.plan_catalog import plan_catalog
    plan_catalog._plans = [
        p.model_copy(update={"stripe_price_id": None if p.is_free else f"price_{p.plan_id}"})
        for p in plan_catalog._plans
    ]
    seeded_db.accounts.seed({
        "account_id": "ACC-1", "email": "owner@example.com", "full_name": "Owner",
        "password_hash": "x", "plan": "professional", "subscription_status": "active",
        "stripe_customer_id": "cus_123",
    })
    return seeded_db


def _event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _subscription(status="active", price="price_business", **extra):
    sub = {
        "id": "sub_1",
        "customer": "cus_123",
        "status": status,
        "items": {"data": [{"price": {"id": price}, "current_period_start": 1767225600,
                            "current_period_end": 1769904000}]},
        "metadata": {},
    }
    sub.update(extra)
    return sub


async def _deliver(event):
    service = StripeWebhookService()
    with patch(CONSTRUCT_EVENT, return_value=event):
        return await service.process_webhook(b"{}", "t=1,v1=sig")


class TestVerification:

    @pytest.mark.asyncio
    async def test_missing_secret_rejects(self, fake_db, monkeypatch):
        monkeypatch.delenv("STRIPE_WEBHOOK_SECRET")
        success, message, _ = await StripeWebhookService().process_webhook(b"{}", "sig")
        assert success is False
        assert message == "Webhook secret not configured"

    @pytest.mark.asyncio
    async def test_invalid_signature_rejects_without_writes(self, fake_db):
        error = stripe.SignatureVerificationError("bad signature", "sig")
        with patch(CONSTRUCT_EVENT, side_effect=error):
            success, message, _ = await StripeWebhookService().process_webhook(b"{}", "sig")
        assert success is False
        assert message == "Invalid signature"
        assert fake_db.writes_excluding() == 0

    @pytest.mark.asyncio
    async def test_malformed_payload_rejects(self, fake_db):
        with patch(CONSTRUCT_EVENT, side_effect=ValueError("not json")):
            success, message, _ = await StripeWebhookService().process_webhook(b"nope", "sig")
        assert (success, message) == (False, "Invalid payload")


class TestSubscriptionEvents:

    @pytest.mark.asyncio
    async def test_updated_sets_plan_from_price(self, priced_db):
        success, _, details = await _deliver(_event("customer.subscription.updated", _subscription()))

        account = priced_db.accounts.docs[0]
        assert success
        assert details["plan_id"] == "business"
        assert account["plan"] == "business"
        assert account["subscription_status"] == "active"
        assert account["subscription_id"] == "sub_1"
        assert account["subscription_end_date"] == datetime.fromtimestamp(1769904000, tz=timezone.utc)

    @pytest.mark.asyncio
    async def test_metadata_plan_used_when_price_unknown(self, priced_db):
        sub = _subscription(price="price_legacy", metadata={"account_id": "ACC-1", "plan_id": "entrepreneur"})
        await _deliver(_event("customer.subscription.created", sub))
        assert priced_db.accounts.docs[0]["plan"] == "entrepreneur"

    @pytest.mark.asyncio
    async def test_deleted_moves_to_free_and_suspends(self, priced_db):
        for i in range(3):
            priced_db.stores.seed({"store_id": f"STR-{i}", "account_id": "ACC-1", "name": "S",
                                   "slug": f"s-{i}", "status": "active", "created_at": T0.replace(day=i + 1)})

        success, _, details = await _deliver(_event("customer.subscription.deleted", _subscription(status="canceled")))

        account = priced_db.accounts.docs[0]
        assert success
        assert account["plan"] == "free"
        assert account["subscription_status"] == "canceled"
        assert account["canceled_at"] is not None
        statuses = [s["status"] for s in priced_db.stores.docs]
        assert statuses == ["active", "suspended", "suspended"]
        assert details["enforcement"][0]["ids"] == ["STR-1", "STR-2"]

    @pytest.mark.asyncio
    async def test_unpaid_update_treated_as_ended(self, priced_db):
        await _deliver(_event("customer.subscription.updated", _subscription(status="unpaid")))
        assert priced_db.accounts.docs[0]["subscription_status"] == "canceled"

    @pytest.mark.asyncio
    async def test_incomplete_subscription_ignored(self, priced_db):
        success, _, details = await _deliver(_event("customer.subscription.created", _subscription(status="incomplete")))
        assert success
        assert details["handled"] is False
        assert priced_db.accounts.docs[0]["plan"] == "professional"


class TestIdempotency:

    @pytest.mark.asyncio
    async def test_same_event_applied_once(self, priced_db):
        event = _event("customer.subscription.updated", _subscription())
        await _deliver(event)
        account_writes = priced_db.accounts.writes

        success, message, _ = await _deliver(event)

        assert success
        assert message == "Already processed"
        assert priced_db.accounts.writes == account_writes
        assert priced_db.stripe_events.docs[0]["status"] == "PROCESSED"

    @pytest.mark.asyncio
    async def test_handler_failure_recorded_and_acknowledged(self, priced_db):
        sub = _subscription(customer="cus_unknown")
        success, message, _ = await _deliver(_event("customer.subscription.updated", sub, event_id="evt_fail"))

        assert success
        assert message == "Event logged with error"
        record = priced_db.stripe_events.docs[0]
        assert record["status"] == "FAILED"
        assert "No account" in record["error"]

    @pytest.mark.asyncio
    async def test_failed_event_can_be_retried(self, priced_db):
        event = _event("customer.subscription.updated", _subscription(customer="cus_late"), event_id="evt_retry")
        await _deliver(event)
        priced_db.accounts.docs[0]["stripe_customer_id"] = "cus_late"

        success, message, _ = await _deliver(event)

        assert (success, message) == (True, "Processed")
        assert priced_db.stripe_events.docs[0]["status"] == "PROCESSED"


class TestInvoiceEvents:

    @pytest.mark.asyncio
    async def test_payment_failed_records_outcome_only(self, priced_db):
        invoice = {"id": "in_1", "customer": "cus_123", "amount_paid": 0, "currency": "usd"}
        await _deliver(_event("invoice.payment_failed", invoice))

        account = priced_db.accounts.docs[0]
        assert account["last_payment_status"] == "failed"
        assert account["plan"] == "professional"
        assert account["subscription_status"] == "active"

    @pytest.mark.asyncio
    async def test_invoice_paid_records_success(self, priced_db):
        invoice = {"id": "in_2", "customer": "cus_123", "amount_paid": 3999, "currency": "usd"}
        success, _, details = await _deliver(_event("invoice.paid", invoice))
        assert success
        assert details["payment_status"] == "succeeded"

    @pytest.mark.asyncio
    async def test_unhandled_event_type_acknowledged(self, priced_db):
        success, _, details = await _deliver(_event("customer.created", {"id": "cus_999"}))
        assert success
        assert details == {"handled": False, "event_type": "customer.created"}
