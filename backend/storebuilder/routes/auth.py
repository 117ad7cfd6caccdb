"""Store Builder Authentication Routes

Endpoints:
- POST /api/storebuilder/auth/register - Register (free plan) and sign in
- POST /api/storebuilder/auth/login - Sign in and start a session
- POST /api/storebuilder/auth/logout - End the session
- GET /api/storebuilder/auth/me - Current account
- PUT /api/storebuilder/auth/profile - Update profile
- GET /api/storebuilder/auth/notifications - Drain session notifications
"""

from fastapi import APIRouter, HTTPException, Depends, Header
from typing import Optional
import logging

from storebuilder.errors import AuthenticationError, StoreBuilderError
from storebuilder.models.user import (
    Account,
    AccountCreate,
    AccountLogin,
    AccountResponse,
    AccountRole,
    NotificationsResponse,
    ProfileUpdate,
    TokenResponse,
)
from storebuilder.routes.common import to_http_exception
from storebuilder.services.account_service import account_service
from storebuilder.services.session_manager import session_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storebuilder/auth", tags=["Store Builder Auth"])


async def get_current_account(authorization: Optional[str] = Header(None)) -> Account:
    """Dependency to get the current account from the bearer token."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization format")

    account = await account_service.get_current_account(authorization[7:])
    if not account:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return account


async def require_admin(account: Account = Depends(get_current_account)) -> Account:
    if account.role != AccountRole.ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return account


async def _start_session(account_id: str):
    """Sessions are best effort: a failure here must not block sign-in."""
    try:
        account = await account_service.get_account(account_id)
        if account:
            await session_manager.start_session(account)
    except Exception as e:
        logger.warning(f"Could not start session for {account_id}: {e}")


@router.post("/register", response_model=TokenResponse)
async def register(data: AccountCreate):
    """Register a new account on the free plan and return a token."""
    try:
        await account_service.register(data)
        response = await account_service.login(AccountLogin(email=data.email, password=data.password))
    except AuthenticationError as e:
        raise HTTPException(status_code=400, detail=e.to_detail())
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Registration failed: {e}")
        raise HTTPException(status_code=500, detail="Registration failed")

    await _start_session(response.account.account_id)
    return response


@router.post("/login", response_model=TokenResponse)
async def login(data: AccountLogin):
    try:
        response = await account_service.login(data)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Login failed: {e}")
        raise HTTPException(status_code=500, detail="Login failed")

    await _start_session(response.account.account_id)
    return response


@router.post("/logout")
async def logout(account: Account = Depends(get_current_account)):
    ended = await session_manager.end_session(account.account_id)
    return {"success": True, "session_ended": ended}


@router.get("/me", response_model=AccountResponse)
async def get_me(account: Account = Depends(get_current_account)):
    return AccountResponse.from_account(account)


@router.put("/profile", response_model=AccountResponse)
async def update_profile(
    data: ProfileUpdate,
    account: Account = Depends(get_current_account),
):
    try:
        updated = await account_service.update_profile(account.account_id, data)
    except StoreBuilderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Profile update failed: {e}")
        raise HTTPException(status_code=500, detail="Profile update failed")

    session = session_manager.get(account.account_id)
    if session:
        session.account = session.account.model_copy(update=data.model_dump(exclude_none=True))
    return AccountResponse.from_account(updated)


@router.get("/notifications", response_model=NotificationsResponse)
async def get_notifications(account: Account = Depends(get_current_account)):
    session = session_manager.get(account.account_id)
    if not session:
        return NotificationsResponse()
    return NotificationsResponse(notifications=session.drain_notifications())
