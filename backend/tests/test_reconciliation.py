"""
Tests for plan limit reconciliation against stored resources: downgrades,
idempotence, subscription expiry and plan correction.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from storebuilder.models.user import Account, SubscriptionStatus
from storebuilder.services import reconciliation

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _account(**overrides):
    data = {
        "account_id": "ACC-1",
        "email": "owner@example.com",
        "full_name": "Owner",
        "password_hash": "x",
        "plan": "professional",
        "subscription_status": "active",
    }
    data.update(overrides)
    return data


def _seed_stores(db, n, products_per_store=0):
    for i in range(n):
        db.stores.seed({
            "store_id": f"STR-{i}", "account_id": "ACC-1", "name": f"Store {i}",
            "slug": f"store-{i}", "status": "active", "created_at": T0 + timedelta(days=i),
        })
        for j in range(products_per_store):
            db.products.seed({
                "product_id": f"PRD-{i}-{j:02d}", "store_id": f"STR-{i}", "name": "P", "price": 1.0,
                "is_active": True, "created_at": T0 + timedelta(days=i, minutes=j),
            })


def _statuses(db):
    return {s["store_id"]: s["status"] for s in db.stores.docs}


def _plan(plans, plan_id):
    return next(p for p in plans if p.plan_id == plan_id)


class TestEnforceAccountLimits:

    @pytest.mark.asyncio
    async def test_downgrade_to_free_suspends_newest_stores(self, seeded_db, plans):
        _seed_stores(seeded_db, 3)

        summary = await reconciliation.enforce_account_limits("ACC-1", _plan(plans, "free"), reason="test")

        assert _statuses(seeded_db) == {"STR-0": "active", "STR-1": "suspended", "STR-2": "suspended"}
        assert len(seeded_db.stores.docs) == 3
        assert summary["actions"][0]["ids"] == ["STR-1", "STR-2"]
        suspended = [s for s in seeded_db.stores.docs if s["status"] == "suspended"]
        assert all(s["suspended_reason"] == "PLAN_LIMIT" for s in suspended)

    @pytest.mark.asyncio
    async def test_products_limited_per_store(self, seeded_db, plans):
        _seed_stores(seeded_db, 1, products_per_store=12)

        await reconciliation.enforce_account_limits("ACC-1", _plan(plans, "free"), reason="test")

        active = sorted(p["product_id"] for p in seeded_db.products.docs if p["is_active"])
        assert active == [f"PRD-0-{j:02d}" for j in range(10)]
        assert len(seeded_db.products.docs) == 12

    @pytest.mark.asyncio
    async def test_suspended_stores_keep_their_products(self, seeded_db, plans):
        _seed_stores(seeded_db, 2, products_per_store=3)
        await reconciliation.enforce_account_limits("ACC-1", _plan(plans, "free"), reason="test")
        assert all(p["is_active"] for p in seeded_db.products.docs)

    @pytest.mark.asyncio
    async def test_second_run_performs_no_writes(self, seeded_db, plans):
        _seed_stores(seeded_db, 3, products_per_store=12)
        free = _plan(plans, "free")

        await reconciliation.enforce_account_limits("ACC-1", free, reason="test")
        writes_after_first = seeded_db.writes_excluding("audit_logs")
        second = await reconciliation.enforce_account_limits("ACC-1", free, reason="test")

        assert second["actions"] == []
        assert seeded_db.writes_excluding("audit_logs") == writes_after_first

    @pytest.mark.asyncio
    async def test_keep_set_uses_owner_reason(self, seeded_db, plans):
        _seed_stores(seeded_db, 3)
        await reconciliation.enforce_account_limits(
            "ACC-1", _plan(plans, "free"), reason="owner_selection", keep_store_ids=["STR-2"],
        )
        assert _statuses(seeded_db) == {"STR-0": "suspended", "STR-1": "suspended", "STR-2": "active"}
        assert {s.get("suspended_reason") for s in seeded_db.stores.docs if s["status"] == "suspended"} == {"OWNER"}

    @pytest.mark.asyncio
    async def test_actions_are_audited(self, seeded_db, plans):
        _seed_stores(seeded_db, 2)
        with patch("storebuilder.services.reconciliation.audit_service.log", new_callable=AsyncMock) as audit:
            await reconciliation.enforce_account_limits("ACC-1", _plan(plans, "free"), reason="test")
        audit.assert_called_once()
        assert audit.call_args[1]["action"].value == "PLAN_LIMIT_ENFORCED"


class TestSubscriptionExpiry:

    def test_lapsed_only_when_active_and_past_end(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        past = Account(**_account(subscription_end_date=now - timedelta(days=1)))
        future = Account(**_account(subscription_end_date=now + timedelta(days=1)))
        canceled = Account(**_account(subscription_status="canceled", subscription_end_date=now - timedelta(days=1)))
        no_end = Account(**_account())

        assert reconciliation.is_subscription_lapsed(past, now)
        assert not reconciliation.is_subscription_lapsed(future, now)
        assert not reconciliation.is_subscription_lapsed(canceled, now)
        assert not reconciliation.is_subscription_lapsed(no_end, now)

    @pytest.mark.asyncio
    async def test_sweep_expires_and_enforces(self, seeded_db):
        seeded_db.accounts.seed(_account(subscription_end_date=datetime.now(timezone.utc) - timedelta(hours=1)))
        seeded_db.accounts.seed(_account(
            account_id="ACC-2", email="other@example.com",
            subscription_end_date=datetime.now(timezone.utc) + timedelta(days=10),
        ))
        _seed_stores(seeded_db, 3)

        expired = await reconciliation.expire_lapsed_subscriptions()

        assert expired == 1
        first = await seeded_db.accounts.find_one({"account_id": "ACC-1"})
        other = await seeded_db.accounts.find_one({"account_id": "ACC-2"})
        assert first["subscription_status"] == "expired"
        assert first["plan"] == "free"
        assert other["subscription_status"] == "active"
        assert list(_statuses(seeded_db).values()).count("active") == 1

    @pytest.mark.asyncio
    async def test_expire_leaves_renewed_subscription_alone(self, seeded_db):
        stale = Account(**_account(subscription_end_date=T0))
        seeded_db.accounts.seed(_account(subscription_end_date=T0 + timedelta(days=400)))
        # Row was renewed and then canceled by the owner before the sweep reached it
        seeded_db.accounts.docs[0]["subscription_status"] = "canceled"

        result = await reconciliation.expire_subscription(stale)

        assert result.subscription_status == SubscriptionStatus.ACTIVE
        assert seeded_db.accounts.docs[0]["subscription_status"] == "canceled"


class TestPlanCorrection:

    @pytest.mark.asyncio
    async def test_unknown_plan_persisted_as_free(self, seeded_db):
        seeded_db.accounts.seed(_account(plan="gold"))
        corrected = await reconciliation.correct_unresolvable_plan(Account(**_account(plan="gold")))

        assert corrected.plan == "free"
        assert seeded_db.accounts.docs[0]["plan"] == "free"

    @pytest.mark.asyncio
    async def test_legacy_name_is_left_as_is(self, seeded_db):
        seeded_db.accounts.seed(_account(plan="Professional"))
        corrected = await reconciliation.correct_unresolvable_plan(Account(**_account(plan="Professional")))
        assert corrected.plan == "Professional"
        assert seeded_db.accounts.writes == 0

    @pytest.mark.asyncio
    async def test_reconcile_missing_account(self, seeded_db):
        assert await reconciliation.reconcile_account("ACC-404", reason="test") is None
