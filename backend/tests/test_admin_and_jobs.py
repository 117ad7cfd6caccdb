"""
Tests for admin plan/status overrides, the job runners and change stream subscriptions.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import OperationFailure

from job_runner import JOB_RUNNERS, run_account_reconciliation, run_plan_catalog_refresh
from storebuilder.errors import NotFoundError
from storebuilder.models.user import Account, AccountRole, SubscriptionStatus
from storebuilder.services.admin_service import AdminService
from storebuilder.services.change_feed import ChangeFeed, ChangeSubscription

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
ADMIN = Account(account_id="ACC-ADMIN", email="admin@example.com", full_name="Admin",
                password_hash="x", role=AccountRole.ROLE_ADMIN)


def _seed_account(db, **overrides):
    data = {"account_id": "ACC-1", "email": "owner@example.com", "full_name": "Owner",
            "password_hash": "x", "plan": "free"}
    data.update(overrides)
    db.accounts.seed(data)


def _seed_stores(db, n):
    for i in range(n):
        db.stores.seed({"store_id": f"STR-{i}", "account_id": "ACC-1", "name": "S", "slug": f"s-{i}",
                        "status": "active", "created_at": T0 + timedelta(days=i)})


class TestAdminService:

    @pytest.mark.asyncio
    async def test_paid_plan_gets_thirty_day_period(self, seeded_db):
        _seed_account(seeded_db)

        result = await AdminService().update_user_plan(ADMIN, "ACC-1", "professional")

        account = seeded_db.accounts.docs[0]
        assert result["subscription_status"] == "active"
        assert account["plan"] == "professional"
        assert account["subscription_end_date"] - account["subscription_start_date"] == timedelta(days=30)

    @pytest.mark.asyncio
    async def test_unknown_account(self, seeded_db):
        with pytest.raises(NotFoundError):
            await AdminService().update_user_plan(ADMIN, "ACC-404", "free")

    @pytest.mark.asyncio
    async def test_expired_status_moves_to_free_and_enforces(self, seeded_db):
        _seed_account(seeded_db, plan="professional", subscription_status="active")
        _seed_stores(seeded_db, 2)

        result = await AdminService().update_user_status(ADMIN, "ACC-1", SubscriptionStatus.EXPIRED)

        account = seeded_db.accounts.docs[0]
        assert account["subscription_status"] == "expired"
        assert account["plan"] == "free"
        assert result["enforcement"][0]["ids"] == ["STR-1"]

    @pytest.mark.asyncio
    async def test_active_status_with_past_end_date_expires(self, seeded_db):
        _seed_account(seeded_db, plan="professional", subscription_status="canceled")

        await AdminService().update_user_status(ADMIN, "ACC-1", SubscriptionStatus.ACTIVE, end_date=T0)

        account = seeded_db.accounts.docs[0]
        assert account["subscription_status"] == "expired"
        assert account["plan"] == "free"

    @pytest.mark.asyncio
    async def test_list_accounts_hides_password_hash(self, seeded_db):
        _seed_account(seeded_db)
        accounts = await AdminService().list_accounts()
        assert len(accounts) == 1
        assert "password_hash" not in accounts[0].model_dump()


class TestJobRunners:

    def test_registry(self):
        assert set(JOB_RUNNERS) == {"subscription_expiry_sweep", "plan_catalog_refresh"}

    @pytest.mark.asyncio
    async def test_plan_catalog_refresh(self, seeded_db):
        result = await run_plan_catalog_refresh()
        assert result["count"] == 4

    @pytest.mark.asyncio
    async def test_account_reconciliation_counts_changes(self, seeded_db):
        _seed_account(seeded_db)
        _seed_stores(seeded_db, 3)

        result = await run_account_reconciliation("ACC-1")

        assert result["count"] == 2
        assert result["message"] == "Items suspended/deactivated: 2"


class TestChangeFeed:

    def test_row_scoped_pipeline(self):
        async def handler(change):
            return None
        subscription = ChangeSubscription("accounts", {"account_id": "ACC-1"}, handler)
        assert subscription.pipeline == [{"$match": {"fullDocument.account_id": "ACC-1"}}]
        assert ChangeSubscription("plans", None, handler).pipeline == []

    @pytest.mark.asyncio
    async def test_standalone_server_falls_back_to_polling(self):
        db = MagicMock()
        db.__getitem__.return_value.watch.side_effect = OperationFailure(
            "The $changeStream stage is only supported on replica sets"
        )
        handled = []

        async def handler(change):
            handled.append(change)

        feed = ChangeFeed()
        with patch("storebuilder.services.change_feed.database.get_db", return_value=db):
            subscription = feed.subscribe("plans", handler)
            await asyncio.wait_for(subscription.task, timeout=1)

        assert handled == []
        assert not subscription.active
        await feed.close()

    @pytest.mark.asyncio
    async def test_close_cancels_running_watches(self):
        started = asyncio.Event()

        class Stream:
            async def __aenter__(self):
                started.set()
                return self

            async def __aexit__(self, *exc):
                return False

            def __aiter__(self):
                return self

            async def __anext__(self):
                await asyncio.sleep(3600)

        db = MagicMock()
        db.__getitem__.return_value.watch.return_value = Stream()

        async def handler(change):
            return None

        feed = ChangeFeed()
        with patch("storebuilder.services.change_feed.database.get_db", return_value=db):
            subscription = feed.subscribe("accounts", handler, match={"account_id": "ACC-1"})
            await asyncio.wait_for(started.wait(), timeout=1)
            await feed.close()

        assert subscription.task.cancelled()
