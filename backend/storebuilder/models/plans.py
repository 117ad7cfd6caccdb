"""Store Builder Plan Models

Plans are rows in the `plans` collection, edited by administrators.
The application only reads them (seeding aside).
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid


# Sentinel used by the highest tiers for "no practical limit"
UNLIMITED = 999999


class ResourceKind(str, Enum):
    """Resources whose active count is capped by a plan"""
    STORES = "stores"
    PRODUCTS = "products"
    CATEGORIES = "categories"


class PlanLimits(BaseModel):
    """Numeric ceilings of a plan (products/categories are per store)."""
    max_stores: int
    max_products: int
    max_categories: int

    def for_kind(self, kind: ResourceKind) -> int:
        return getattr(self, f"max_{ResourceKind(kind).value}")


# Conservative fallback for read-only limit queries when nothing resolves
DEFAULT_LIMITS = PlanLimits(max_stores=1, max_products=10, max_categories=3)


class Plan(BaseModel):
    """Subscription plan definition."""
    plan_id: str = Field(default_factory=lambda: f"PLN-{uuid.uuid4().hex[:12].upper()}")
    name: str
    description: Optional[str] = None
    price: float = Field(default=0.0, ge=0)
    currency: str = "usd"

    max_stores: int = Field(ge=0)
    max_products: int = Field(ge=0)
    max_categories: int = Field(ge=0)
    features: List[str] = Field(default_factory=list)

    is_active: bool = True
    is_free: bool = False
    level: int = 0  # Rank used for upgrade/downgrade comparisons

    # Stripe recurring price for paid plans
    stripe_price_id: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}

    @property
    def limits(self) -> PlanLimits:
        return PlanLimits(
            max_stores=self.max_stores,
            max_products=self.max_products,
            max_categories=self.max_categories,
        )


class PlanResponse(BaseModel):
    """Public plan info for the pricing page"""
    plan_id: str
    name: str
    description: Optional[str] = None
    price: float
    currency: str
    max_stores: int
    max_products: int
    max_categories: int
    features: List[str]
    is_free: bool
    level: int

    model_config = {"extra": "ignore"}


class StoreUsage(BaseModel):
    store_id: str
    name: str
    status: str
    active_products: int
    active_categories: int


class CurrentPlanResponse(BaseModel):
    """Resolved plan, its limits and what the account currently uses."""
    plan: Optional[PlanResponse] = None
    limits: PlanLimits
    using_default_limits: bool = False
    subscription_status: Optional[str] = None
    subscription_end_date: Optional[datetime] = None
    active_stores: int = 0
    can_create_store: bool = False
    stores: List[StoreUsage] = Field(default_factory=list)


# Seed definitions (only used when the plans collection is empty)
DEFAULT_PLANS = [
    {
        "plan_id": "free",
        "name": "Free",
        "description": "One catalog to get started",
        "price": 0.0,
        "max_stores": 1,
        "max_products": 10,
        "max_categories": 3,
        "features": ["whatsapp_orders", "basic_branding"],
        "is_free": True,
        "level": 0,
    },
    {
        "plan_id": "entrepreneur",
        "name": "Entrepreneur",
        "description": "For a growing single shop",
        "price": 9.99,
        "max_stores": 1,
        "max_products": 50,
        "max_categories": 10,
        "features": ["whatsapp_orders", "basic_branding", "custom_palette", "featured_products"],
        "level": 1,
    },
    {
        "plan_id": "professional",
        "name": "Professional",
        "description": "Several catalogs and a larger range",
        "price": 19.99,
        "max_stores": 3,
        "max_products": 200,
        "max_categories": 30,
        "features": ["whatsapp_orders", "basic_branding", "custom_palette", "featured_products", "delivery_options"],
        "level": 2,
    },
    {
        "plan_id": "business",
        "name": "Business",
        "description": "No practical limits",
        "price": 39.99,
        "max_stores": UNLIMITED,
        "max_products": UNLIMITED,
        "max_categories": UNLIMITED,
        "features": ["whatsapp_orders", "basic_branding", "custom_palette", "featured_products", "delivery_options", "priority_support"],
        "level": 3,
    },
]
