"""Store Builder Billing Routes

Endpoints:
- POST /api/storebuilder/billing/checkout - Stripe checkout for a paid plan
- POST /api/storebuilder/billing/portal - Stripe billing portal (existing customers only)
"""

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Optional
import logging

from storebuilder.errors import StoreBuilderError
from storebuilder.models.user import Account
from storebuilder.routes.auth import get_current_account
from storebuilder.routes.common import bad_request, to_http_exception
from storebuilder.services.plan_catalog import plan_catalog
from storebuilder.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storebuilder/billing", tags=["Store Builder Billing"])


class CheckoutRequest(BaseModel):
    plan_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str
    plan_id: str
    plan_name: str


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


class PortalResponse(BaseModel):
    portal_url: str


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(request: CheckoutRequest, account: Account = Depends(get_current_account)):
    """Start a hosted checkout. Returns the URL to redirect to."""
    await plan_catalog.ensure_loaded()
    plan = plan_catalog.get_plan_by_id(request.plan_id)
    if plan is None:
        raise HTTPException(
            status_code=404,
            detail={"error_code": "NOT_FOUND", "message": f"Plan not found: {request.plan_id}"},
        )

    try:
        return await stripe_service.create_checkout_session(
            account, plan, success_url=request.success_url, cancel_url=request.cancel_url,
        )
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise bad_request(str(e))


@router.post("/portal", response_model=PortalResponse)
async def open_portal(
    request: Optional[PortalRequest] = None,
    account: Account = Depends(get_current_account),
):
    try:
        return await stripe_service.open_billing_portal(
            account, return_url=request.return_url if request else None,
        )
    except StoreBuilderError as e:
        raise to_http_exception(e)
