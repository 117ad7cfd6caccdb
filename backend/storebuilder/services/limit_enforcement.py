"""Limit Enforcement Engine

Pure decision functions: given a plan and a collection of store/category/
product documents, decide which items stay active and which must be
suspended or deactivated. Nothing here reads or writes the database; the
reconciliation service applies the decisions.

Rules:
- Survivors are the oldest-created items, tie-broken by id. The input order
  is never trusted because the database does not guarantee a stable one.
- Only the activity flag is ever changed. Nothing is deleted.
- Stores may instead be kept by an explicit keep-set chosen by the owner.
- Reactivation is refused when the active count is already at the ceiling.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from storebuilder.models.plans import PlanLimits

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class EnforcementDecision(BaseModel):
    """Outcome of one enforcement pass over a collection."""
    resource: str
    limit: int
    kept: List[str] = Field(default_factory=list)
    deactivated: List[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.deactivated)


def as_utc(value: Any) -> datetime:
    """Normalize a stored timestamp; naive values are read as UTC."""
    if value is None:
        return _EPOCH
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _EPOCH
    if not isinstance(value, datetime):
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def creation_order(items: Iterable[Dict], id_field: str) -> List[Dict]:
    """Sort by (created_at, id) ascending."""
    return sorted(items, key=lambda item: (as_utc(item.get("created_at")), str(item.get(id_field) or "")))


def is_store_active(store: Dict) -> bool:
    return store.get("status") == "active"


def is_item_active(item: Dict) -> bool:
    return item.get("is_active") is True


def _select(
    items: Sequence[Dict],
    limit: int,
    id_field: str,
    resource: str,
) -> EnforcementDecision:
    ordered = creation_order(items, id_field)
    keep = ordered[:max(limit, 0)]
    excess = ordered[max(limit, 0):]
    return EnforcementDecision(
        resource=resource,
        limit=limit,
        kept=[item[id_field] for item in keep],
        deactivated=[item[id_field] for item in excess],
    )


def enforce_store_limit(
    stores: Sequence[Dict],
    limits: PlanLimits,
    keep_ids: Optional[Iterable[str]] = None,
) -> EnforcementDecision:
    """Decide which of an account's active stores to suspend.

    Without a keep-set the oldest `max_stores` active stores survive, and
    nothing happens while the account is within its limit. With a keep-set
    (the interactive flow) exactly the listed active stores survive; listing
    more than the plan allows is a ValueError.
    """
    active = [s for s in stores if is_store_active(s)]

    if keep_ids is None:
        if len(active) <= limits.max_stores:
            return EnforcementDecision(
                resource="stores",
                limit=limits.max_stores,
                kept=[s["store_id"] for s in creation_order(active, "store_id")],
            )
        return _select(active, limits.max_stores, "store_id", "stores")

    wanted: Set[str] = set(keep_ids)
    keep = [s for s in active if s["store_id"] in wanted]
    if len(keep) > limits.max_stores:
        raise ValueError(
            f"Cannot keep {len(keep)} stores active; the plan allows {limits.max_stores}"
        )
    rest = [s for s in active if s["store_id"] not in wanted]
    return EnforcementDecision(
        resource="stores",
        limit=limits.max_stores,
        kept=[s["store_id"] for s in creation_order(keep, "store_id")],
        deactivated=[s["store_id"] for s in creation_order(rest, "store_id")],
    )


def enforce_product_limit(products: Sequence[Dict], limits: PlanLimits) -> EnforcementDecision:
    """Deactivate active products of one store beyond `max_products`."""
    active = [p for p in products if is_item_active(p)]
    return _select(active, limits.max_products, "product_id", "products")


def enforce_category_limit(categories: Sequence[Dict], limits: PlanLimits) -> EnforcementDecision:
    """Deactivate active categories of one store beyond `max_categories`."""
    active = [c for c in categories if is_item_active(c)]
    return _select(active, limits.max_categories, "category_id", "categories")


def count_active_stores(stores: Iterable[Dict]) -> int:
    return sum(1 for s in stores if is_store_active(s))


def count_active_items(items: Iterable[Dict]) -> int:
    return sum(1 for i in items if is_item_active(i))


def has_room(active_count: int, ceiling: int) -> bool:
    return active_count < ceiling


def can_reactivate_store(store: Dict, stores: Sequence[Dict], limits: PlanLimits) -> Tuple[bool, str]:
    """Check whether a suspended store may become active again."""
    if store.get("status") == "active":
        return True, "already_active"
    if store.get("status") == "archived":
        return False, "archived"
    others = [s for s in stores if s.get("store_id") != store.get("store_id")]
    if not has_room(count_active_stores(others), limits.max_stores):
        return False, "limit_reached"
    return True, "ok"


def can_reactivate_product(product: Dict, products: Sequence[Dict], limits: PlanLimits) -> Tuple[bool, str]:
    """Check whether an inactive product may be switched back on."""
    if is_item_active(product):
        return True, "already_active"
    others = [p for p in products if p.get("product_id") != product.get("product_id")]
    if not has_room(count_active_items(others), limits.max_products):
        return False, "limit_reached"
    return True, "ok"


def can_reactivate_category(category: Dict, categories: Sequence[Dict], limits: PlanLimits) -> Tuple[bool, str]:
    if is_item_active(category):
        return True, "already_active"
    others = [c for c in categories if c.get("category_id") != category.get("category_id")]
    if not has_room(count_active_items(others), limits.max_categories):
        return False, "limit_reached"
    return True, "ok"
