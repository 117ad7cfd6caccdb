"""Store Builder Account Model

An account is the authenticated identity plus its subscription state.
`plan` references a plan by id; legacy rows may still hold a plan name.
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid


class AccountRole(str, Enum):
    ROLE_USER = "ROLE_USER"
    ROLE_ADMIN = "ROLE_ADMIN"  # May change any account's plan/status


class SubscriptionStatus(str, Enum):
    """Subscription state of an account"""
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"  # End date passed without renewal; treated like canceled


class Account(BaseModel):
    """Store Builder account."""
    account_id: str = Field(default_factory=lambda: f"ACC-{uuid.uuid4().hex[:12].upper()}")
    email: EmailStr
    full_name: str
    password_hash: str
    role: AccountRole = AccountRole.ROLE_USER

    # Profile
    phone: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None

    # Subscription
    plan: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_id: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    payment_method: Optional[str] = None

    # Stripe
    stripe_customer_id: Optional[str] = None
    last_payment_status: Optional[str] = None
    last_payment_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_login_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class AccountCreate(BaseModel):
    """Registration request (password rules are checked by the service)"""
    email: EmailStr
    full_name: str = Field(min_length=1)
    password: str

    model_config = {"extra": "ignore"}


class AccountLogin(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None

    model_config = {"extra": "ignore"}


class AccountResponse(BaseModel):
    """Safe account response (no password hash)"""
    account_id: str
    email: str
    full_name: str
    role: AccountRole
    phone: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    plan: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    has_billing_account: bool = False
    created_at: datetime
    last_login_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            **account.model_dump(exclude={"password_hash"}),
            has_billing_account=bool(account.stripe_customer_id),
        )


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountResponse


class Notification(BaseModel):
    """Transient user-facing notice queued on a session"""
    kind: str
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationsResponse(BaseModel):
    notifications: List[Notification] = Field(default_factory=list)
