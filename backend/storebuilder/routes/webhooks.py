"""Store Builder Stripe Webhook Route

Deliveries that fail signature verification (or arrive while no signing
secret is configured) get a 400 and change nothing. Verified deliveries
are acknowledged with 200 even when their handler failed; the failure is
recorded on the stripe_events row and in the audit log.
"""

from fastapi import APIRouter, Request, Header, HTTPException
from typing import Optional
import logging

from storebuilder.services.stripe_webhook_service import stripe_webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storebuilder/webhook", tags=["Store Builder Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    payload = await request.body()

    success, message, details = await stripe_webhook_service.process_webhook(
        payload=payload,
        signature=stripe_signature or "",
    )

    if not success:
        logger.error(f"Stripe webhook rejected: {message}")
        raise HTTPException(status_code=400, detail=message)

    return {"status": "received", "message": message, "details": details}
