"""Store Builder Audit Log Models

Records plan changes, enforcement outcomes and billing events.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid


class AuditAction(str, Enum):
    """Audit action types"""
    # Account
    ACCOUNT_REGISTERED = "ACCOUNT_REGISTERED"
    ACCOUNT_LOGIN = "ACCOUNT_LOGIN"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    PLAN_CORRECTED = "PLAN_CORRECTED"  # Unresolvable plan replaced by the free plan

    # Subscription
    PLAN_CHANGED = "PLAN_CHANGED"
    SUBSCRIPTION_STATUS_CHANGED = "SUBSCRIPTION_STATUS_CHANGED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    BILLING_CUSTOMER_CREATED = "BILLING_CUSTOMER_CREATED"

    # Stores
    STORE_CREATED = "STORE_CREATED"
    STORE_SUSPENDED = "STORE_SUSPENDED"
    STORE_REACTIVATED = "STORE_REACTIVATED"
    STORE_ARCHIVED = "STORE_ARCHIVED"

    # Enforcement
    PLAN_LIMIT_ENFORCED = "PLAN_LIMIT_ENFORCED"

    # System
    STRIPE_EVENT_FAILED = "STRIPE_EVENT_FAILED"


class AuditSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class AuditLog(BaseModel):
    """Audit log entry"""
    log_id: str = Field(default_factory=lambda: f"AL-{uuid.uuid4().hex[:12].upper()}")

    # Actor: the account itself, an admin, or SYSTEM (jobs, webhooks)
    account_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: str = "SYSTEM"

    action: AuditAction
    severity: AuditSeverity = AuditSeverity.INFO

    resource_type: Optional[str] = None  # e.g. "store", "account"
    resource_id: Optional[str] = None

    description: str
    details: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}
