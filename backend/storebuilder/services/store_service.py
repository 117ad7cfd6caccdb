"""Store Builder Store Service

Stores, categories and products, with plan ceilings checked before any write.

Every create or reactivation follows the same optimistic pattern:
1. count the rows held against the ceiling right before writing and refuse
   when it is reached
2. write
3. count again; if a concurrent write pushed the count over the ceiling,
   undo this write and refuse
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import logging

from pymongo.errors import DuplicateKeyError

from database import database
from storebuilder.errors import (
    InvalidStateError,
    LimitExceededError,
    NoFreePlanError,
    NotFoundError,
    SlugTakenError,
)
from storebuilder.models.audit import AuditAction
from storebuilder.models.plans import Plan
from storebuilder.models.stores import (
    Store,
    StoreStatus,
    StoreSettings,
    StoreCreate,
    StoreUpdate,
    Category,
    CategoryCreate,
    CategoryUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
)
from storebuilder.models.user import Account
from storebuilder.services import limit_enforcement, plan_resolver, reconciliation
from storebuilder.services.audit_service import audit_service
from storebuilder.services.plan_catalog import plan_catalog

logger = logging.getLogger(__name__)


class StoreService:
    """Catalog management for one account at a time."""

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _plan_for(self, account: Account) -> Plan:
        """Plan used by write paths; never falls back to default limits."""
        plans = await plan_catalog.ensure_loaded()
        plan = plan_resolver.get_user_plan(account, plans)
        if plan is None:
            raise NoFreePlanError()
        return plan

    async def _insert_within_limit(
        self,
        collection,
        doc: Dict[str, Any],
        id_field: str,
        count_query: Dict[str, Any],
        resource: str,
        limit: int,
        plan: Plan,
    ):
        if await collection.count_documents(count_query) >= limit:
            raise LimitExceededError(resource, limit, plan.name)

        await collection.insert_one(doc)

        # A concurrent create may have landed between the count and the insert
        if await collection.count_documents(count_query) > limit:
            await collection.delete_one({id_field: doc[id_field]})
            logger.warning(f"Rolled back {resource} {doc[id_field]}: concurrent create exceeded limit {limit}")
            raise LimitExceededError(resource, limit, plan.name)

    async def _activate_within_limit(
        self,
        collection,
        id_field: str,
        item_id: str,
        inactive_filter: Dict[str, Any],
        activate: Dict[str, Any],
        deactivate: Dict[str, Any],
        count_query: Dict[str, Any],
        resource: str,
        limit: int,
        plan: Plan,
    ) -> bool:
        if await collection.count_documents(count_query) >= limit:
            raise LimitExceededError(resource, limit, plan.name)

        result = await collection.update_one({id_field: item_id, **inactive_filter}, {"$set": activate})
        if not result.modified_count:
            return False

        if await collection.count_documents(count_query) > limit:
            await collection.update_one({id_field: item_id}, {"$set": deactivate})
            logger.warning(f"Reverted reactivation of {resource} {item_id}: concurrent change exceeded limit {limit}")
            raise LimitExceededError(resource, limit, plan.name)
        return True

    async def _ensure_slug_available(self, slug: str, exclude_store_id: Optional[str] = None):
        db = database.get_db()
        query: Dict[str, Any] = {"slug": slug}
        if exclude_store_id:
            query["store_id"] = {"$ne": exclude_store_id}
        if await db.stores.find_one(query, {"_id": 0, "store_id": 1}):
            raise SlugTakenError(slug)

    # =========================================================================
    # Stores
    # =========================================================================

    async def get_owned_store(self, account_id: str, store_id: str) -> Dict[str, Any]:
        db = database.get_db()
        store = await db.stores.find_one({"store_id": store_id, "account_id": account_id}, {"_id": 0})
        if not store:
            raise NotFoundError("store", store_id)
        return store

    async def list_stores(self, account_id: str, include_archived: bool = False) -> List[Dict[str, Any]]:
        db = database.get_db()
        query: Dict[str, Any] = {"account_id": account_id}
        if not include_archived:
            query["status"] = {"$ne": StoreStatus.ARCHIVED.value}
        stores = await db.stores.find(query, {"_id": 0}).to_list(length=None)
        return limit_enforcement.creation_order(stores, "store_id")

    async def load_account_stores(self, account_id: str) -> List[Dict[str, Any]]:
        """Stores with their categories and products, oldest first at every level."""
        db = database.get_db()
        stores = await self.list_stores(account_id)
        for store in stores:
            categories = await db.categories.find({"store_id": store["store_id"]}, {"_id": 0}).to_list(length=None)
            products = await db.products.find({"store_id": store["store_id"]}, {"_id": 0}).to_list(length=None)
            store["categories"] = limit_enforcement.creation_order(categories, "category_id")
            store["products"] = limit_enforcement.creation_order(products, "product_id")
        return stores

    async def create_store(self, account: Account, data: StoreCreate) -> Store:
        db = database.get_db()
        plan = await self._plan_for(account)
        await self._ensure_slug_available(data.slug)

        store = Store(
            account_id=account.account_id,
            name=data.name,
            slug=data.slug,
            description=data.description,
            settings=data.settings or StoreSettings(),
        )

        try:
            await self._insert_within_limit(
                db.stores,
                store.model_dump(),
                "store_id",
                {"account_id": account.account_id, "status": StoreStatus.ACTIVE.value},
                "stores",
                plan.max_stores,
                plan,
            )
        except DuplicateKeyError:
            raise SlugTakenError(data.slug)

        await audit_service.log(
            action=AuditAction.STORE_CREATED,
            description=f"Store created: {store.slug}",
            account_id=account.account_id,
            actor_id=account.account_id,
            actor_role=account.role.value,
            resource_type="store",
            resource_id=store.store_id,
        )
        return store

    async def update_store(self, account: Account, store_id: str, data: StoreUpdate) -> Store:
        db = database.get_db()
        existing = await self.get_owned_store(account.account_id, store_id)

        updates: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if data.name is not None:
            updates["name"] = data.name
        if data.description is not None:
            updates["description"] = data.description
        if data.slug is not None and data.slug != existing.get("slug"):
            await self._ensure_slug_available(data.slug, exclude_store_id=store_id)
            updates["slug"] = data.slug
        if data.settings:
            merged = {**(existing.get("settings") or {}), **data.settings}
            updates["settings"] = StoreSettings(**merged).model_dump()

        try:
            await db.stores.update_one({"store_id": store_id}, {"$set": updates})
        except DuplicateKeyError:
            raise SlugTakenError(data.slug)

        return Store(**{**existing, **updates})

    async def archive_store(self, account: Account, store_id: str) -> Store:
        db = database.get_db()
        existing = await self.get_owned_store(account.account_id, store_id)
        now = datetime.now(timezone.utc)
        updates = {"status": StoreStatus.ARCHIVED.value, "updated_at": now}
        await db.stores.update_one({"store_id": store_id}, {"$set": updates})

        await audit_service.log(
            action=AuditAction.STORE_ARCHIVED,
            description=f"Store archived: {existing.get('slug')}",
            account_id=account.account_id,
            actor_id=account.account_id,
            actor_role=account.role.value,
            resource_type="store",
            resource_id=store_id,
        )
        return Store(**{**existing, **updates})

    async def reactivate_store(self, account: Account, store_id: str) -> Store:
        """Bring a suspended store back, refusing when the account is at its store ceiling."""
        db = database.get_db()
        plan = await self._plan_for(account)
        existing = await self.get_owned_store(account.account_id, store_id)

        if existing.get("status") == StoreStatus.ACTIVE.value:
            return Store(**existing)
        if existing.get("status") == StoreStatus.ARCHIVED.value:
            raise InvalidStateError("STORE_ARCHIVED", "Archived stores cannot be reactivated")

        now = datetime.now(timezone.utc)
        activated = await self._activate_within_limit(
            db.stores,
            "store_id",
            store_id,
            {"status": StoreStatus.SUSPENDED.value},
            {"status": StoreStatus.ACTIVE.value, "suspended_reason": None, "suspended_at": None, "updated_at": now},
            {"status": StoreStatus.SUSPENDED.value, "updated_at": now},
            {"account_id": account.account_id, "status": StoreStatus.ACTIVE.value},
            "stores",
            plan.max_stores,
            plan,
        )
        if not activated:
            return Store(**await self.get_owned_store(account.account_id, store_id))

        await audit_service.log(
            action=AuditAction.STORE_REACTIVATED,
            description=f"Store reactivated: {existing.get('slug')}",
            account_id=account.account_id,
            actor_id=account.account_id,
            actor_role=account.role.value,
            resource_type="store",
            resource_id=store_id,
        )
        return Store(**{**existing, "status": StoreStatus.ACTIVE, "suspended_reason": None,
                        "suspended_at": None, "updated_at": now})

    async def suspend_stores(self, account: Account, keep_store_ids: List[str]) -> dict:
        """Interactive downgrade: keep the chosen stores, suspend every other active one."""
        plan = await self._plan_for(account)
        owned = {s["store_id"] for s in await self.list_stores(account.account_id)}
        unknown = [sid for sid in keep_store_ids if sid not in owned]
        if unknown:
            raise NotFoundError("store", unknown[0])

        try:
            summary = await reconciliation.enforce_account_limits(
                account.account_id, plan, reason="owner_selection", keep_store_ids=keep_store_ids,
            )
        except ValueError:
            raise LimitExceededError("stores", plan.max_stores, plan.name)

        suspended = [a for a in summary["actions"] if a["resource"] == "stores"]
        for action in suspended:
            await audit_service.log(
                action=AuditAction.STORE_SUSPENDED,
                description=f"{action['count']} store(s) suspended by owner selection",
                account_id=account.account_id,
                actor_id=account.account_id,
                actor_role=account.role.value,
                resource_type="store",
                details={"store_ids": action["ids"], "kept": keep_store_ids},
            )
        return summary

    # =========================================================================
    # Categories
    # =========================================================================

    async def _get_owned_category(self, account_id: str, category_id: str) -> Dict[str, Any]:
        db = database.get_db()
        category = await db.categories.find_one({"category_id": category_id}, {"_id": 0})
        if not category:
            raise NotFoundError("category", category_id)
        await self.get_owned_store(account_id, category["store_id"])
        return category

    async def create_category(self, account: Account, store_id: str, data: CategoryCreate) -> Category:
        db = database.get_db()
        await self.get_owned_store(account.account_id, store_id)

        category = Category(
            store_id=store_id,
            name=data.name,
            description=data.description,
            order=data.order,
            is_active=data.is_active,
        )

        # Every category in the store counts, active or not
        plan = await self._plan_for(account)
        await self._insert_within_limit(
            db.categories,
            category.model_dump(),
            "category_id",
            {"store_id": store_id},
            "categories",
            plan.max_categories,
            plan,
        )
        return category

    async def update_category(self, account: Account, category_id: str, data: CategoryUpdate) -> Category:
        db = database.get_db()
        existing = await self._get_owned_category(account.account_id, category_id)
        now = datetime.now(timezone.utc)

        updates = data.model_dump(exclude_none=True, exclude={"is_active"})
        updates["updated_at"] = now

        if data.is_active is True and not existing.get("is_active"):
            plan = await self._plan_for(account)
            await self._activate_within_limit(
                db.categories,
                "category_id",
                category_id,
                {"is_active": False},
                {"is_active": True, "deactivated_reason": None, "updated_at": now},
                {"is_active": False, "updated_at": now},
                {"store_id": existing["store_id"], "is_active": True},
                "categories",
                plan.max_categories,
                plan,
            )
            updates.update({"is_active": True, "deactivated_reason": None})
        elif data.is_active is False:
            updates.update({"is_active": False, "deactivated_reason": "OWNER"})

        await db.categories.update_one({"category_id": category_id}, {"$set": updates})
        return Category(**{**existing, **updates})

    async def delete_category(self, account: Account, category_id: str) -> int:
        """Delete a category; its products stay, with the reference cleared."""
        db = database.get_db()
        existing = await self._get_owned_category(account.account_id, category_id)

        result = await db.products.update_many(
            {"store_id": existing["store_id"], "category_id": category_id},
            {"$set": {"category_id": None, "updated_at": datetime.now(timezone.utc)}},
        )
        await db.categories.delete_one({"category_id": category_id})
        logger.info(f"Category {category_id} deleted; {result.modified_count} product(s) uncategorized")
        return result.modified_count

    # =========================================================================
    # Products
    # =========================================================================

    async def _get_owned_product(self, account_id: str, product_id: str) -> Dict[str, Any]:
        db = database.get_db()
        product = await db.products.find_one({"product_id": product_id}, {"_id": 0})
        if not product:
            raise NotFoundError("product", product_id)
        await self.get_owned_store(account_id, product["store_id"])
        return product

    async def _check_category(self, store_id: str, category_id: Optional[str]):
        if not category_id:
            return
        db = database.get_db()
        if not await db.categories.find_one({"category_id": category_id, "store_id": store_id}, {"_id": 0}):
            raise NotFoundError("category", category_id)

    async def create_product(self, account: Account, store_id: str, data: ProductCreate) -> Product:
        db = database.get_db()
        await self.get_owned_store(account.account_id, store_id)
        await self._check_category(store_id, data.category_id)

        product = Product(store_id=store_id, **data.model_dump())

        if not product.is_active:
            await db.products.insert_one(product.model_dump())
            return product

        plan = await self._plan_for(account)
        await self._insert_within_limit(
            db.products,
            product.model_dump(),
            "product_id",
            {"store_id": store_id, "is_active": True},
            "products",
            plan.max_products,
            plan,
        )
        return product

    async def try_reactivate_product(self, account: Account, product_id: str) -> Product:
        """Switch a product back on; refused without any write at the product ceiling."""
        db = database.get_db()
        existing = await self._get_owned_product(account.account_id, product_id)
        if existing.get("is_active"):
            return Product(**existing)

        plan = await self._plan_for(account)
        now = datetime.now(timezone.utc)
        activated = await self._activate_within_limit(
            db.products,
            "product_id",
            product_id,
            {"is_active": False},
            {"is_active": True, "deactivated_reason": None, "updated_at": now},
            {"is_active": False, "updated_at": now},
            {"store_id": existing["store_id"], "is_active": True},
            "products",
            plan.max_products,
            plan,
        )
        if not activated:
            return Product(**await self._get_owned_product(account.account_id, product_id))
        return Product(**{**existing, "is_active": True, "deactivated_reason": None, "updated_at": now})

    async def update_product(self, account: Account, product_id: str, data: ProductUpdate) -> Product:
        db = database.get_db()
        existing = await self._get_owned_product(account.account_id, product_id)

        fields_set = data.model_fields_set
        updates = {k: v for k, v in data.model_dump(exclude={"is_active"}).items() if k in fields_set}
        if "category_id" in updates:
            await self._check_category(existing["store_id"], updates["category_id"])

        if data.is_active is True and not existing.get("is_active"):
            existing = (await self.try_reactivate_product(account, product_id)).model_dump()
        elif data.is_active is False:
            updates.update({"is_active": False, "deactivated_reason": "OWNER"})

        updates["updated_at"] = datetime.now(timezone.utc)
        await db.products.update_one({"product_id": product_id}, {"$set": updates})
        return Product(**{**existing, **updates})

    async def delete_product(self, account: Account, product_id: str):
        db = database.get_db()
        await self._get_owned_product(account.account_id, product_id)
        await db.products.delete_one({"product_id": product_id})


# Global instance
store_service = StoreService()
