"""Store Builder Account Service

Registration, login and profile management. Accounts are created on the
free plan; registration refreshes the plan catalog first and refuses to
proceed when no single free plan exists.

Failure messages are normalized so callers never see provider wording:
every duplicate-email variant reads "This email is already registered".
"""

from datetime import datetime, timezone
from typing import Optional
import logging
import os

from pymongo.errors import DuplicateKeyError

from database import database
from auth import (
    hash_password,
    verify_password,
    create_access_token,
    decode_access_token,
    validate_password_strength,
)
from storebuilder.errors import AuthenticationError, NoFreePlanError, NotFoundError
from storebuilder.models.audit import AuditAction
from storebuilder.models.user import (
    Account,
    AccountCreate,
    AccountLogin,
    AccountResponse,
    AccountRole,
    ProfileUpdate,
    TokenResponse,
)
from storebuilder.services.audit_service import audit_service
from storebuilder.services.plan_catalog import plan_catalog

logger = logging.getLogger(__name__)

TOKEN_PRODUCT = "storebuilder"

EMAIL_TAKEN_MESSAGE = "This email is already registered"
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
INVALID_EMAIL_MESSAGE = "Please enter a valid email address"


def normalize_auth_error(raw: str) -> str:
    """Collapse identity-provider error strings into one message per cause."""
    text = (raw or "").lower()
    if "already registered" in text or "already exists" in text or "duplicate key" in text or "e11000" in text:
        return EMAIL_TAKEN_MESSAGE
    if "password" in text and ("at least" in text or "too short" in text or "characters" in text):
        return "Password must be at least 6 characters"
    if "invalid login" in text or "invalid email or password" in text or "credentials" in text:
        return INVALID_CREDENTIALS_MESSAGE
    if "email" in text and ("invalid" in text or "validate" in text):
        return INVALID_EMAIL_MESSAGE
    return "Authentication failed. Please try again."


def _super_admin_emails() -> set:
    raw = os.getenv("SUPER_ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


class AccountService:
    """Authentication and profile service for Store Builder accounts."""

    async def register(self, data: AccountCreate) -> Account:
        """Register a new account on the free plan."""
        db = database.get_db()

        is_valid, message = validate_password_strength(data.password)
        if not is_valid:
            raise AuthenticationError(normalize_auth_error(message))

        email = data.email.lower()
        if await db.accounts.find_one({"email": email}, {"_id": 0, "account_id": 1}):
            raise AuthenticationError(EMAIL_TAKEN_MESSAGE)

        # Fresh catalog so the account gets the current free plan id
        await plan_catalog.load_plans()
        free_plan = plan_catalog.get_free_plan()
        if free_plan is None:
            logger.error("Registration refused: no free plan configured")
            raise NoFreePlanError()

        account = Account(
            email=email,
            full_name=data.full_name.strip(),
            password_hash=hash_password(data.password),
            role=AccountRole.ROLE_ADMIN if email in _super_admin_emails() else AccountRole.ROLE_USER,
            plan=free_plan.plan_id,
        )

        try:
            await db.accounts.insert_one(account.model_dump())
        except DuplicateKeyError as e:
            raise AuthenticationError(normalize_auth_error(str(e)))

        await audit_service.log(
            action=AuditAction.ACCOUNT_REGISTERED,
            description=f"Account registered on {free_plan.name}",
            account_id=account.account_id,
            actor_id=account.account_id,
            actor_role=account.role.value,
            resource_type="account",
            resource_id=account.account_id,
        )
        logger.info(f"New Store Builder account registered: {account.account_id}")
        return account

    async def login(self, data: AccountLogin) -> TokenResponse:
        """Authenticate and return a bearer token."""
        db = database.get_db()

        doc = await db.accounts.find_one({"email": data.email.lower()}, {"_id": 0})
        if not doc or not verify_password(data.password, doc["password_hash"]):
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

        now = datetime.now(timezone.utc)
        await db.accounts.update_one(
            {"account_id": doc["account_id"]},
            {"$set": {"last_login_at": now}}
        )
        doc["last_login_at"] = now
        account = Account(**doc)

        token = create_access_token({
            "sub": account.account_id,
            "email": account.email,
            "product": TOKEN_PRODUCT,
        })

        return TokenResponse(access_token=token, account=AccountResponse.from_account(account))

    async def get_current_account(self, token: str) -> Optional[Account]:
        payload = decode_access_token(token)
        if not payload or payload.get("product") != TOKEN_PRODUCT:
            return None
        return await self.get_account(payload.get("sub"))

    async def get_account(self, account_id: Optional[str]) -> Optional[Account]:
        if not account_id:
            return None
        db = database.get_db()
        doc = await db.accounts.find_one({"account_id": account_id}, {"_id": 0})
        if doc:
            return Account(**doc)
        return None

    async def update_profile(self, account_id: str, data: ProfileUpdate) -> Account:
        """Update profile fields; plan and subscription fields are not editable here."""
        db = database.get_db()

        updates = data.model_dump(exclude_none=True)
        if "full_name" in updates:
            updates["full_name"] = updates["full_name"].strip()
        updates["updated_at"] = datetime.now(timezone.utc)

        result = await db.accounts.update_one({"account_id": account_id}, {"$set": updates})
        if not result.matched_count:
            raise NotFoundError("account", account_id)

        await audit_service.log(
            action=AuditAction.PROFILE_UPDATED,
            description="Profile updated",
            account_id=account_id,
            actor_id=account_id,
            actor_role="ROLE_USER",
            resource_type="account",
            resource_id=account_id,
            details={"fields": sorted(k for k in updates if k != "updated_at")},
        )
        return await self.get_account(account_id)


# Global instance
account_service = AccountService()
