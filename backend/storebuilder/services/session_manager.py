"""Account sessions and the per-session reconciliation loop.

A session is created at login and torn down at logout. While it lives it owns:
- a snapshot of the account row and its resolved plan
- the account's stores (with categories and products)
- a queue of transient notifications for the UI
- an APScheduler interval job that re-checks the account every
  RECONCILIATION_INTERVAL_SECONDS
- a change-stream subscription on the account row, so admin edits are
  picked up without waiting for the poll

Only one reconciliation runs per session at a time; a tick that finds the
previous one still running is skipped. A tick that finds neither the plan
nor the subscription status changed performs no writes, unless it is forced
by a plan catalog change.
"""
import asyncio
import copy
import logging
import os
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.interval import IntervalTrigger

from database import database
from storebuilder.models.plans import Plan
from storebuilder.models.user import Account, Notification
from storebuilder.services import plan_resolver, reconciliation
from storebuilder.services.change_feed import ChangeFeed, ChangeSubscription
from storebuilder.services.plan_catalog import PlanCatalog, plan_catalog
from storebuilder.services.store_service import store_service

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECONCILIATION_INTERVAL_SECONDS = int(os.getenv("RECONCILIATION_INTERVAL_SECONDS", "60"))


class AccountSession:
    """In-memory state of one signed-in account."""

    def __init__(self, account: Account, catalog: PlanCatalog):
        self.account = account
        self.catalog = catalog
        self.plan: Optional[Plan] = None
        self.stores: List[Dict[str, Any]] = []
        self.notifications: deque = deque(maxlen=20)
        self.started_at = datetime.now(timezone.utc)
        self.last_reconciled_at: Optional[datetime] = None
        self.subscription: Optional[ChangeSubscription] = None
        self._lock = asyncio.Lock()

    @property
    def account_id(self) -> str:
        return self.account.account_id

    @property
    def job_id(self) -> str:
        return f"reconcile_{self.account_id}"

    async def initialize(self):
        await self.catalog.load_plans()
        self.account = await reconciliation.correct_unresolvable_plan(self.account)
        self.plan = plan_resolver.get_user_plan(self.account, self.catalog.plans)
        self.stores = await store_service.load_account_stores(self.account_id)
        self.last_reconciled_at = datetime.now(timezone.utc)

    def notify(self, kind: str, message: str):
        self.notifications.append(Notification(kind=kind, message=message))

    def drain_notifications(self) -> List[Notification]:
        items = list(self.notifications)
        self.notifications.clear()
        return items

    def _has_drifted(self, fresh: Account) -> bool:
        return (
            fresh.plan != self.account.plan
            or fresh.subscription_status != self.account.subscription_status
        )

    async def reconcile(self, reason: str = "poll", force: bool = False) -> bool:
        """Re-check the account row; returns True when something changed.

        With force=True the plan is re-resolved from the catalog and enforced
        even when the account row itself has not changed (plan rows edited).
        """
        if self._lock.locked() and not force:
            logger.debug(f"Reconciliation for {self.account_id} already running; tick skipped")
            return False

        async with self._lock:
            try:
                db = database.get_db()
                doc = await db.accounts.find_one({"account_id": self.account_id}, {"_id": 0})
                if not doc:
                    logger.warning(f"Session account {self.account_id} no longer exists")
                    return False

                fresh = Account(**doc)
                if reconciliation.is_subscription_lapsed(fresh):
                    fresh = await reconciliation.expire_subscription(fresh)

                if not force and not self._has_drifted(fresh):
                    self.last_reconciled_at = datetime.now(timezone.utc)
                    return False

                fresh = await reconciliation.correct_unresolvable_plan(fresh)
                new_plan = plan_resolver.get_user_plan(fresh, self.catalog.plans)
                if new_plan is not None:
                    await reconciliation.enforce_account_limits(self.account_id, new_plan, reason=reason)
                stores = await store_service.load_account_stores(self.account_id)
            except Exception as e:
                # Transient: the snapshot is untouched so the next tick retries
                logger.warning(f"Reconciliation for {self.account_id} failed ({reason}), will retry: {e}")
                return False

            old_plan = self.plan
            self.account = fresh
            self.plan = new_plan
            self.stores = stores
            self.last_reconciled_at = datetime.now(timezone.utc)

            if plan_resolver.is_upgrade(old_plan, new_plan):
                self.notify("plan_upgraded", f"Your plan has been upgraded to {new_plan.name}.")

            logger.info(
                "SESSION_RECONCILED account_id=%s reason=%s plan=%s status=%s",
                self.account_id, reason, new_plan.plan_id if new_plan else None,
                fresh.subscription_status.value if fresh.subscription_status else None,
            )
            return True

    async def apply_optimistic(
        self,
        local_change: Callable[[List[Dict[str, Any]]], None],
        remote: Callable[[], Awaitable[T]],
    ) -> T:
        """Apply a change to the cached stores, then confirm it remotely.

        On failure the cached stores are restored from the snapshot taken
        before the local change and the error is re-raised.
        """
        snapshot = copy.deepcopy(self.stores)
        local_change(self.stores)
        try:
            return await remote()
        except Exception:
            self.stores = snapshot
            raise


class SessionManager:
    """Registry of live sessions and their background work."""

    def __init__(self, catalog: PlanCatalog = plan_catalog):
        self.catalog = catalog
        self.scheduler = None
        self.change_feed: Optional[ChangeFeed] = None
        self.interval_seconds = RECONCILIATION_INTERVAL_SECONDS
        self._sessions: Dict[str, AccountSession] = {}

    def configure(self, scheduler=None, change_feed: Optional[ChangeFeed] = None):
        self.scheduler = scheduler
        self.change_feed = change_feed

    def get(self, account_id: str) -> Optional[AccountSession]:
        return self._sessions.get(account_id)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def account_ids(self) -> List[str]:
        return list(self._sessions)

    async def start_session(self, account: Account) -> AccountSession:
        existing = self._sessions.get(account.account_id)
        if existing:
            return existing

        session = AccountSession(account, self.catalog)
        await session.initialize()
        self._sessions[account.account_id] = session

        if self.scheduler is not None:
            self.scheduler.add_job(
                session.reconcile,
                IntervalTrigger(seconds=self.interval_seconds),
                id=session.job_id,
                name=f"Reconcile {account.account_id}",
                kwargs={"reason": "poll"},
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )

        if self.change_feed is not None:
            async def on_account_change(change: Dict[str, Any]):
                await session.reconcile(reason="account_change")

            session.subscription = self.change_feed.subscribe(
                "accounts", on_account_change, match={"account_id": account.account_id}
            )

        logger.info(f"Session started for {account.account_id} (plan={session.plan.plan_id if session.plan else None})")
        return session

    async def end_session(self, account_id: str) -> bool:
        session = self._sessions.pop(account_id, None)
        if session is None:
            return False

        if self.scheduler is not None:
            try:
                self.scheduler.remove_job(session.job_id)
            except JobLookupError:
                logger.debug(f"No reconciliation job for {account_id}")

        if self.change_feed is not None:
            self.change_feed.unsubscribe(session.subscription)

        logger.info(f"Session ended for {account_id}")
        return True

    async def shutdown(self):
        for account_id in list(self._sessions):
            await self.end_session(account_id)


# Global instance
session_manager = SessionManager()
