"""Plan resolution for accounts.

Pure reads over a plan catalog snapshot: nothing here touches the database
or mutates its arguments.

Resolution order for `account.plan`:
1. exact plan_id match
2. case-insensitive name match (legacy rows stored the plan name)
3. the free plan
"""
from typing import Optional, Sequence

from storebuilder.models.plans import Plan, PlanLimits, ResourceKind, DEFAULT_LIMITS
from storebuilder.models.user import Account


def get_free_plan(plans: Sequence[Plan]) -> Optional[Plan]:
    """Return the single active free plan, or None when there are zero or several."""
    free = [p for p in plans if p.is_free and p.is_active]
    if len(free) != 1:
        return None
    return free[0]


def find_plan(plans: Sequence[Plan], plan_ref: Optional[str]) -> Optional[Plan]:
    if not plan_ref:
        return None
    for plan in plans:
        if plan.plan_id == plan_ref:
            return plan
    wanted = plan_ref.strip().casefold()
    for plan in plans:
        if plan.name.strip().casefold() == wanted:
            return plan
    return None


def plan_is_resolvable(account: Account, plans: Sequence[Plan]) -> bool:
    return find_plan(plans, account.plan) is not None


def get_user_plan(account: Account, plans: Sequence[Plan]) -> Optional[Plan]:
    """Resolve the account's plan, degrading to the free plan. Never raises."""
    return find_plan(plans, account.plan) or get_free_plan(plans)


def get_limits_for_user(account: Account, plans: Sequence[Plan]) -> PlanLimits:
    plan = get_user_plan(account, plans)
    if plan is None:
        return DEFAULT_LIMITS
    return plan.limits


def get_max_limit_for_user(account: Account, plans: Sequence[Plan], kind: ResourceKind) -> int:
    """Ceiling for one resource kind; conservative defaults when nothing resolves."""
    return get_limits_for_user(account, plans).for_kind(kind)


def can_create_store(account: Account, plans: Sequence[Plan], active_store_count: int) -> bool:
    return active_store_count < get_max_limit_for_user(account, plans, ResourceKind.STORES)


def is_upgrade(old_plan: Optional[Plan], new_plan: Optional[Plan]) -> bool:
    if old_plan is None or new_plan is None:
        return False
    return new_plan.level > old_plan.level
