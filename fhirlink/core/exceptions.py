"""
Domain error taxonomy and global exception handlers.

Every error raised by the stores, the resource linker and the services
derives from :class:`FhirLinkError`.  The handlers render them as JSON
without leaking stack traces or credential material to clients.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class FhirLinkError(Exception):
    """Base class; subclasses pin the HTTP status and a client-safe detail."""

    status_code: int = 500
    detail: str = "Internal server error"
    headers: dict[str, str] | None = None

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    @property
    def error(self) -> str:
        return type(self).__name__


# ── Validation (400) ────────────────────────────────────────────────
class ValidationFailed(FhirLinkError):
    status_code = 400
    detail = "Invalid request"


class InvalidEmail(ValidationFailed):
    detail = "Email address is invalid or cannot be used"


class WeakPassword(ValidationFailed):
    detail = "Password does not meet the strength policy"


class InvalidTTL(ValidationFailed):
    detail = "Access code lifetime is out of range"


class UnsupportedResourceType(ValidationFailed):
    detail = "Resource type cannot be linked to an account"


# ── Authorization (401 / 403) ───────────────────────────────────────
class InvalidCredentials(FhirLinkError):
    status_code = 401
    detail = "Incorrect email or password"
    headers = {"WWW-Authenticate": "Bearer"}


class TokenInvalid(FhirLinkError):
    status_code = 401
    detail = "Could not validate credentials"
    headers = {"WWW-Authenticate": "Bearer"}


class TokenExpired(TokenInvalid):
    detail = "Session token has expired"


class Forbidden(FhirLinkError):
    status_code = 403
    detail = "Admin privileges required"


# ── Lookup (404) ────────────────────────────────────────────────────
class CodeNotFound(FhirLinkError):
    status_code = 404
    detail = "Access code not found"


class ResourceNotFound(FhirLinkError):
    status_code = 404
    detail = "Resource not found"


class AccountNotFound(FhirLinkError):
    status_code = 404
    detail = "Account not found"


# ── Conflict (409 / 410) ────────────────────────────────────────────
class CodeAlreadyConsumed(FhirLinkError):
    status_code = 409
    detail = "Access code has already been used"


class EmailMismatch(FhirLinkError):
    status_code = 409
    detail = "Access code was not issued for this email"


class ResourceAlreadyLinked(FhirLinkError):
    status_code = 409
    detail = "Resource is already linked to an account"


class CodeExpired(FhirLinkError):
    status_code = 410
    detail = "Access code has expired"


# ── Upstream dependencies (502 / 503) ───────────────────────────────
class ResourceCreationFailed(FhirLinkError):
    status_code = 502
    detail = "FHIR server rejected the resource"


class UpstreamUnavailable(FhirLinkError):
    status_code = 503
    detail = "FHIR server is unavailable"


class StoreUnavailable(FhirLinkError):
    status_code = 503
    detail = "Data store is unavailable"


class HashingUnavailable(FhirLinkError):
    status_code = 503
    detail = "Credential service is busy, retry later"


# ── Post-commit inconsistency (500) ─────────────────────────────────
class AccountCreationFailed(FhirLinkError):
    status_code = 500
    detail = (
        "Access code was consumed but the account could not be created; "
        "contact an administrator for a new code"
    )


# ── Handlers ────────────────────────────────────────────────────────
async def _domain_error_handler(_request: Request, exc: FhirLinkError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.error, "success": False},
        headers=exc.headers,
    )


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "success": False},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal database error", "success": False},
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "success": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(FhirLinkError, _domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
