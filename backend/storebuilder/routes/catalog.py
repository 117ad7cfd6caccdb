"""Store Builder Catalog Routes (categories and products)

Endpoints:
- POST /api/storebuilder/stores/{store_id}/categories
- PUT /api/storebuilder/categories/{category_id}
- DELETE /api/storebuilder/categories/{category_id} - products are kept, uncategorized
- POST /api/storebuilder/stores/{store_id}/products
- PUT /api/storebuilder/products/{product_id}
- POST /api/storebuilder/products/{product_id}/reactivate
- DELETE /api/storebuilder/products/{product_id}
"""

from fastapi import APIRouter, HTTPException, Depends
import logging

from storebuilder.errors import StoreBuilderError
from storebuilder.models.stores import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
)
from storebuilder.models.user import Account
from storebuilder.routes.auth import get_current_account
from storebuilder.routes.common import to_http_exception
from storebuilder.services.store_service import store_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storebuilder", tags=["Store Builder Catalog"])


@router.post("/stores/{store_id}/categories", response_model=Category, status_code=201)
async def create_category(store_id: str, data: CategoryCreate, account: Account = Depends(get_current_account)):
    try:
        return await store_service.create_category(account, store_id, data)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Category creation failed in {store_id}: {e}")
        raise HTTPException(status_code=500, detail="Category creation failed")


@router.put("/categories/{category_id}", response_model=Category)
async def update_category(category_id: str, data: CategoryUpdate, account: Account = Depends(get_current_account)):
    try:
        return await store_service.update_category(account, category_id, data)
    except StoreBuilderError as e:
        raise to_http_exception(e)


@router.delete("/categories/{category_id}")
async def delete_category(category_id: str, account: Account = Depends(get_current_account)):
    try:
        uncategorized = await store_service.delete_category(account, category_id)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    return {"success": True, "products_uncategorized": uncategorized}


@router.post("/stores/{store_id}/products", response_model=Product, status_code=201)
async def create_product(store_id: str, data: ProductCreate, account: Account = Depends(get_current_account)):
    try:
        return await store_service.create_product(account, store_id, data)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Product creation failed in {store_id}: {e}")
        raise HTTPException(status_code=500, detail="Product creation failed")


@router.put("/products/{product_id}", response_model=Product)
async def update_product(product_id: str, data: ProductUpdate, account: Account = Depends(get_current_account)):
    try:
        return await store_service.update_product(account, product_id, data)
    except StoreBuilderError as e:
        raise to_http_exception(e)


@router.post("/products/{product_id}/reactivate", response_model=Product)
async def reactivate_product(product_id: str, account: Account = Depends(get_current_account)):
    try:
        return await store_service.try_reactivate_product(account, product_id)
    except StoreBuilderError as e:
        raise to_http_exception(e)


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, account: Account = Depends(get_current_account)):
    try:
        await store_service.delete_product(account, product_id)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    return {"success": True}
