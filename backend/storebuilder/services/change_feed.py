"""Change notifications from MongoDB change streams.

A subscription watches one collection, optionally narrowed to rows matching
an equality filter (e.g. a single account), and awaits a handler for every
change. Table-scoped subscriptions drive plan catalog reloads; row-scoped
ones let a session react to admin edits of its account within seconds.

Change streams need a replica set. On a standalone server the watch fails,
a warning is logged, and the periodic reconciliation poll is the only
signal left.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pymongo.errors import PyMongoError

from database import database

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class ChangeSubscription:
    """Handle for one running watch; cancel() unsubscribes."""

    def __init__(self, collection: str, match: Optional[Dict[str, Any]], handler: ChangeHandler):
        self.collection = collection
        self.match = match or {}
        self.handler = handler
        self.task: Optional[asyncio.Task] = None

    @property
    def pipeline(self):
        if not self.match:
            return []
        return [{"$match": {f"fullDocument.{k}": v for k, v in self.match.items()}}]

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()

    def cancel(self):
        if self.task and not self.task.done():
            self.task.cancel()


class ChangeFeed:
    """Owns every running change-stream subscription."""

    def __init__(self):
        self._subscriptions: Set[ChangeSubscription] = set()

    def subscribe(
        self,
        collection: str,
        handler: ChangeHandler,
        match: Optional[Dict[str, Any]] = None,
    ) -> ChangeSubscription:
        subscription = ChangeSubscription(collection, match, handler)
        subscription.task = asyncio.create_task(self._watch(subscription))
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Optional[ChangeSubscription]):
        if subscription is None:
            return
        subscription.cancel()
        self._subscriptions.discard(subscription)

    async def close(self):
        subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.cancel()
        tasks = [s.task for s in subscriptions if s.task]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._subscriptions.clear()
        logger.info(f"Change feed closed ({len(subscriptions)} subscription(s))")

    async def _watch(self, subscription: ChangeSubscription):
        db = database.get_db()
        try:
            async with db[subscription.collection].watch(
                subscription.pipeline, full_document="updateLookup"
            ) as stream:
                logger.info(f"Watching {subscription.collection} changes (match={subscription.match})")
                async for change in stream:
                    try:
                        await subscription.handler(change)
                    except Exception as e:
                        logger.error(
                            f"Change handler failed for {subscription.collection} "
                            f"({change.get('operationType')}): {e}"
                        )
        except PyMongoError as e:
            logger.warning(
                f"Change stream unavailable for {subscription.collection}, relying on polling: {e}"
            )
        finally:
            self._subscriptions.discard(subscription)


# Global instance
change_feed = ChangeFeed()
