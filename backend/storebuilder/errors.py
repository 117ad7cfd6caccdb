"""Store Builder domain errors.

Routes translate these into HTTPException details of the form
{"error_code": ..., "message": ...}. Infrastructure failures are wrapped in
ExternalServiceError so callers only ever see the generic retry message.
"""

from typing import Optional, Dict, Any


RETRY_LATER_MESSAGE = "Something went wrong on our side. Please try again in a few minutes."


class StoreBuilderError(Exception):
    """Base class for all Store Builder errors."""
    error_code = "STORE_BUILDER_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_detail(self) -> Dict[str, Any]:
        return {"error_code": self.error_code, "message": self.message}


class NotFoundError(StoreBuilderError):
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.capitalize()} not found")


class NoFreePlanError(StoreBuilderError):
    """Zero or several active free plans exist; the catalog is misconfigured."""
    error_code = "NO_FREE_PLAN"

    def __init__(self):
        super().__init__("No free plan is configured. Please contact support.")


class LimitExceededError(StoreBuilderError):
    """A create/reactivate would take an active count above the plan ceiling."""
    error_code = "PLAN_LIMIT_REACHED"

    def __init__(self, resource: str, limit: int, plan_name: str):
        self.resource = resource
        self.limit = limit
        self.plan_name = plan_name
        super().__init__(
            f"Your {plan_name} plan allows {limit} active {resource}. "
            f"Upgrade your plan to add more."
        )

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail.update({"resource": self.resource, "limit": self.limit, "plan_name": self.plan_name})
        return detail


class SlugTakenError(StoreBuilderError):
    error_code = "SLUG_TAKEN"

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__("This store URL is already in use. Please choose another one.")


class BillingAccountMissingError(StoreBuilderError):
    """Portal requested for an account that never completed a checkout."""
    error_code = "NO_BILLING_ACCOUNT"

    def __init__(self):
        super().__init__("No billing account found. Subscribe to a plan first.")


class AuthenticationError(StoreBuilderError):
    error_code = "AUTH_FAILED"


class ExternalServiceError(StoreBuilderError):
    """Database or payment provider failure. Context goes to the log only."""
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, context: str):
        self.context = context
        super().__init__(RETRY_LATER_MESSAGE)


class InvalidStateError(StoreBuilderError):
    """The resource is in a state that does not allow the requested transition."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        super().__init__(message)
