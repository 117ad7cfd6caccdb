"""Store Builder Admin Routes (ROLE_ADMIN only)

Endpoints:
- GET /api/storebuilder/admin/accounts - List accounts
- POST /api/storebuilder/admin/accounts/{account_id}/plan - Set plan directly
- POST /api/storebuilder/admin/accounts/{account_id}/status - Set subscription status
- POST /api/storebuilder/admin/accounts/{account_id}/reconcile - Re-run limit enforcement
- GET /api/storebuilder/admin/accounts/{account_id}/audit - Recent audit entries
- POST /api/storebuilder/admin/jobs/run - Run a background job now
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel
from datetime import datetime
from typing import Optional
import logging

from storebuilder.errors import StoreBuilderError
from storebuilder.models.user import Account, SubscriptionStatus
from storebuilder.routes.auth import require_admin
from storebuilder.routes.common import to_http_exception
from storebuilder.services.admin_service import admin_service
from storebuilder.services.audit_service import audit_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storebuilder/admin", tags=["Store Builder Admin"])


class UpdatePlanRequest(BaseModel):
    plan_id: str


class UpdateStatusRequest(BaseModel):
    status: SubscriptionStatus
    end_date: Optional[datetime] = None


class RunJobRequest(BaseModel):
    job: str


@router.get("/accounts")
async def list_accounts(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: Account = Depends(require_admin),
):
    accounts = await admin_service.list_accounts(skip=skip, limit=limit)
    return {"accounts": accounts, "count": len(accounts)}


@router.post("/accounts/{account_id}/plan")
async def update_user_plan(account_id: str, data: UpdatePlanRequest, admin: Account = Depends(require_admin)):
    try:
        return await admin_service.update_user_plan(admin, account_id, data.plan_id)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Admin plan update failed for {account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update plan")


@router.post("/accounts/{account_id}/status")
async def update_user_status(account_id: str, data: UpdateStatusRequest, admin: Account = Depends(require_admin)):
    try:
        return await admin_service.update_user_status(admin, account_id, data.status, data.end_date)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Admin status update failed for {account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update subscription status")


@router.post("/accounts/{account_id}/reconcile")
async def reconcile_account(account_id: str, admin: Account = Depends(require_admin)):
    from job_runner import run_account_reconciliation
    try:
        return await run_account_reconciliation(account_id)
    except Exception as e:
        logger.error(f"Manual reconciliation failed for {account_id}: {e}")
        raise HTTPException(status_code=500, detail="Reconciliation failed")


@router.get("/accounts/{account_id}/audit")
async def get_account_audit(
    account_id: str,
    limit: int = Query(50, ge=1, le=200),
    admin: Account = Depends(require_admin),
):
    entries = await audit_service.list_for_account(account_id, limit=limit)
    return {"entries": entries, "count": len(entries)}


@router.post("/jobs/run")
async def run_job_now(body: RunJobRequest, admin: Account = Depends(require_admin)):
    """Run a single background job by id. Returns a job-specific message."""
    from job_runner import JOB_RUNNERS

    job_id = (body.job or "").strip()
    if not job_id or job_id not in JOB_RUNNERS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid job. Use one of: {', '.join(sorted(JOB_RUNNERS.keys()))}"
        )
    try:
        result = await JOB_RUNNERS[job_id]()
    except Exception as e:
        logger.error(f"Manual job run error ({job_id}): {e}")
        raise HTTPException(status_code=500, detail=f"Failed to run job: {job_id}")

    logger.info(f"Admin {admin.account_id} ran job {job_id}")
    message = (result.get("message") if result else None) or f"Job {job_id} completed"
    return {"success": True, "job": job_id, "message": message}
