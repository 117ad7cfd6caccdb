"""Store Builder Catalog Models

Stores, categories and products. An account exclusively owns its stores;
a store exclusively owns its categories and products. A product points at
no more than one category, and that reference is cleared (not cascaded)
when the category is deleted.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid


SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class StoreStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"  # Over plan limit; keeps all data
    ARCHIVED = "archived"    # Retired by the owner; not counted against limits


class DeactivationReason(str, Enum):
    PLAN_LIMIT = "PLAN_LIMIT"
    OWNER = "OWNER"


class StoreSettings(BaseModel):
    """Catalog configuration: branding, messaging, payment and delivery."""
    # Branding
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    currency: str = "USD"
    heading_font: str = "Inter"
    body_font: str = "Inter"
    color_palette: str = "predeterminado"
    border_radius: int = Field(default=8, ge=0)
    products_per_page: int = Field(default=12, ge=1)

    # Contact / social
    whatsapp_number: Optional[str] = None
    instagram_url: Optional[str] = None
    facebook_url: Optional[str] = None
    show_social: bool = True

    # Messaging
    message_greeting: str = "Hola, me gustaría hacer el siguiente pedido:"
    message_footer: str = "¡Gracias!"
    include_phone: bool = True
    include_comments: bool = True

    # Payment
    accept_cash: bool = True
    accept_bank_transfer: bool = False
    bank_details: Optional[str] = None

    # Delivery
    allow_pickup: bool = True
    allow_delivery: bool = False
    delivery_cost: float = Field(default=0.0, ge=0)
    delivery_zone: Optional[str] = None

    model_config = {"extra": "ignore"}


class Store(BaseModel):
    store_id: str = Field(default_factory=lambda: f"STR-{uuid.uuid4().hex[:12].upper()}")
    account_id: str
    name: str
    slug: str
    description: Optional[str] = None
    status: StoreStatus = StoreStatus.ACTIVE
    suspended_reason: Optional[DeactivationReason] = None
    suspended_at: Optional[datetime] = None
    settings: StoreSettings = Field(default_factory=StoreSettings)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class Category(BaseModel):
    category_id: str = Field(default_factory=lambda: f"CAT-{uuid.uuid4().hex[:12].upper()}")
    store_id: str
    name: str
    description: Optional[str] = None
    order: int = 0
    is_active: bool = True
    deactivated_reason: Optional[DeactivationReason] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class Product(BaseModel):
    product_id: str = Field(default_factory=lambda: f"PRD-{uuid.uuid4().hex[:12].upper()}")
    store_id: str
    category_id: Optional[str] = None
    name: str
    short_description: Optional[str] = None
    long_description: Optional[str] = None
    price: float = Field(ge=0)
    main_image: Optional[str] = None
    gallery_images: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    deactivated_reason: Optional[DeactivationReason] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


# =============================================================================
# Request models
# =============================================================================

class StoreCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    slug: str = Field(min_length=2, max_length=60, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    settings: Optional[StoreSettings] = None


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    slug: Optional[str] = Field(default=None, min_length=2, max_length=60, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None  # Partial settings merge


class SuspendStoresRequest(BaseModel):
    """Interactive keep-set: stores listed here stay active, the rest are suspended."""
    keep_store_ids: List[str]


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    description: Optional[str] = None
    order: int = 0
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    description: Optional[str] = None
    order: Optional[int] = None
    is_active: Optional[bool] = None


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    price: float = Field(ge=0)
    category_id: Optional[str] = None
    short_description: Optional[str] = None
    long_description: Optional[str] = None
    main_image: Optional[str] = None
    gallery_images: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    price: Optional[float] = Field(default=None, ge=0)
    category_id: Optional[str] = None
    short_description: Optional[str] = None
    long_description: Optional[str] = None
    main_image: Optional[str] = None
    gallery_images: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class StoreDetail(BaseModel):
    """A store with its children, all ordered oldest-created first."""
    store: Store
    categories: List[Category] = Field(default_factory=list)
    products: List[Product] = Field(default_factory=list)
