"""Store Builder Store Routes

Endpoints:
- GET /api/storebuilder/stores - Stores with categories and products
- POST /api/storebuilder/stores - Create a store (store ceiling + unique slug)
- PUT /api/storebuilder/stores/{store_id} - Update name/slug/settings
- POST /api/storebuilder/stores/suspend - Keep the chosen stores, suspend the rest
- POST /api/storebuilder/stores/{store_id}/reactivate - Reactivate a suspended store
- POST /api/storebuilder/stores/{store_id}/archive - Archive a store
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Any, Dict, List
import logging

from storebuilder.errors import StoreBuilderError
from storebuilder.models.stores import Store, StoreCreate, StoreUpdate, SuspendStoresRequest
from storebuilder.models.user import Account
from storebuilder.routes.auth import get_current_account
from storebuilder.routes.common import bad_request, to_http_exception
from storebuilder.services.session_manager import session_manager
from storebuilder.services.store_service import store_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storebuilder/stores", tags=["Store Builder Stores"])


def _set_store_status(store_id: str, status: str):
    def change(stores: List[Dict[str, Any]]):
        for store in stores:
            if store.get("store_id") == store_id:
                store["status"] = status
    return change


async def _with_session(account_id: str, local_change, remote):
    """Run `remote`, mirroring the change on the live session's cached stores."""
    session = session_manager.get(account_id)
    if session is None:
        return await remote()
    return await session.apply_optimistic(local_change, remote)


@router.get("")
async def list_stores(account: Account = Depends(get_current_account)):
    try:
        stores = await store_service.load_account_stores(account.account_id)
    except Exception as e:
        logger.error(f"Failed to list stores for {account.account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load stores")
    return {"stores": stores, "total": len(stores)}


@router.post("", response_model=Store, status_code=201)
async def create_store(data: StoreCreate, account: Account = Depends(get_current_account)):
    try:
        store = await store_service.create_store(account, data)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Store creation failed for {account.account_id}: {e}")
        raise HTTPException(status_code=500, detail="Store creation failed")

    session = session_manager.get(account.account_id)
    if session:
        session.stores.append({**store.model_dump(), "categories": [], "products": []})
    return store


@router.put("/{store_id}", response_model=Store)
async def update_store(store_id: str, data: StoreUpdate, account: Account = Depends(get_current_account)):
    try:
        return await store_service.update_store(account, store_id, data)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise bad_request(str(e))


@router.post("/suspend")
async def suspend_stores(data: SuspendStoresRequest, account: Account = Depends(get_current_account)):
    """Interactive downgrade flow: the owner picks which stores stay active."""
    keep = set(data.keep_store_ids)

    def change(stores: List[Dict[str, Any]]):
        for store in stores:
            if store.get("status") == "active" and store.get("store_id") not in keep:
                store["status"] = "suspended"

    try:
        summary = await _with_session(
            account.account_id,
            change,
            lambda: store_service.suspend_stores(account, data.keep_store_ids),
        )
    except StoreBuilderError as e:
        raise to_http_exception(e)
    return summary


@router.post("/{store_id}/reactivate", response_model=Store)
async def reactivate_store(store_id: str, account: Account = Depends(get_current_account)):
    try:
        return await _with_session(
            account.account_id,
            _set_store_status(store_id, "active"),
            lambda: store_service.reactivate_store(account, store_id),
        )
    except StoreBuilderError as e:
        raise to_http_exception(e)


@router.post("/{store_id}/archive", response_model=Store)
async def archive_store(store_id: str, account: Account = Depends(get_current_account)):
    try:
        return await _with_session(
            account.account_id,
            _set_store_status(store_id, "archived"),
            lambda: store_service.archive_store(account, store_id),
        )
    except StoreBuilderError as e:
        raise to_http_exception(e)
