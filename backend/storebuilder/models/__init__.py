"""Store Builder Data Models"""

from .plans import (
    Plan,
    PlanLimits,
    PlanResponse,
    ResourceKind,
    DEFAULT_LIMITS,
    UNLIMITED,
)
from .user import (
    Account,
    AccountCreate,
    AccountResponse,
    AccountRole,
    SubscriptionStatus,
)
from .stores import (
    Store,
    StoreStatus,
    StoreSettings,
    Category,
    Product,
    DeactivationReason,
)
from .audit import AuditLog, AuditAction, AuditSeverity

__all__ = [
    # Plans
    "Plan",
    "PlanLimits",
    "PlanResponse",
    "ResourceKind",
    "DEFAULT_LIMITS",
    "UNLIMITED",
    # Accounts
    "Account",
    "AccountCreate",
    "AccountResponse",
    "AccountRole",
    "SubscriptionStatus",
    # Catalog
    "Store",
    "StoreStatus",
    "StoreSettings",
    "Category",
    "Product",
    "DeactivationReason",
    # Audit
    "AuditLog",
    "AuditAction",
    "AuditSeverity",
]
