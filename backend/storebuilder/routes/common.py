"""Translate Store Builder errors into HTTP responses."""

from fastapi import HTTPException

from storebuilder.errors import (
    StoreBuilderError,
    NotFoundError,
    NoFreePlanError,
    LimitExceededError,
    SlugTakenError,
    BillingAccountMissingError,
    AuthenticationError,
    ExternalServiceError,
    InvalidStateError,
)

STATUS_CODES = {
    NotFoundError: 404,
    NoFreePlanError: 503,
    LimitExceededError: 403,
    SlugTakenError: 409,
    BillingAccountMissingError: 400,
    AuthenticationError: 401,
    ExternalServiceError: 502,
    InvalidStateError: 409,
}


def to_http_exception(exc: StoreBuilderError) -> HTTPException:
    status_code = 400
    for error_type, code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return HTTPException(status_code=status_code, detail=exc.to_detail())


def bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"error_code": "INVALID_REQUEST", "message": message})
