"""
Access code issuer.

Creates the FHIR resource first and persists the code last, so a failure
can leave at most an unclaimed resource behind, never a code that points
at nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fhirlink.core.config import settings
from fhirlink.core.exceptions import (
    InvalidEmail,
    InvalidTTL,
    ResourceAlreadyLinked,
    StoreUnavailable,
    UnsupportedResourceType,
)
from fhirlink.core.security import bounded, code_hint, generate_access_code, is_valid_email
from fhirlink.models.access_code import AccessCode
from fhirlink.models.account import ROLE_FOR_RESOURCE
from fhirlink.stores.access_code_store import AccessCodeStore
from fhirlink.stores.credential_store import CredentialStore

logger = logging.getLogger(__name__)

_MAX_CODE_ATTEMPTS = 3


class ResourceLinker(Protocol):
    async def create(self, resource_type: str, attributes: dict[str, Any]) -> str: ...

    async def get(self, resource_type: str, resource_id: str) -> dict[str, Any]: ...


@dataclass(frozen=True)
class IssuedCode:
    resource_type: str
    resource_id: str
    code: str
    target_email: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessCodeIssuer:
    def __init__(
        self,
        codes: AccessCodeStore,
        credentials: CredentialStore,
        linker: ResourceLinker,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.codes = codes
        self.credentials = credentials
        self.linker = linker
        self.clock = clock

    async def issue_code(
        self,
        resource_type: str,
        attributes: dict[str, Any],
        target_email: str,
        ttl: timedelta | None = None,
    ) -> IssuedCode:
        """Create a resource and a code that lets *target_email* claim it."""
        ttl = self._resolve_ttl(ttl)
        self._check_resource_type(resource_type)
        email = await self._check_email(target_email)

        resource_id = await self.linker.create(resource_type, attributes)
        return await self._persist(resource_type, resource_id, email, ttl)

    async def reissue_code(
        self,
        resource_type: str,
        resource_id: str,
        target_email: str,
        ttl: timedelta | None = None,
    ) -> IssuedCode:
        """Issue a fresh code for a resource that already exists upstream."""
        ttl = self._resolve_ttl(ttl)
        self._check_resource_type(resource_type)
        email = await self._check_email(target_email)

        await self.linker.get(resource_type, resource_id)
        owner = await bounded(
            self.credentials.find_by_resource(resource_type, resource_id),
            "resource link lookup",
        )
        if owner is not None:
            raise ResourceAlreadyLinked(f"{resource_type}/{resource_id} already has an account")
        return await self._persist(resource_type, resource_id, email, ttl)

    # ── helpers ─────────────────────────────────────────────────────
    @staticmethod
    def _resolve_ttl(ttl: timedelta | None) -> timedelta:
        if ttl is None:
            return timedelta(hours=settings.ACCESS_CODE_TTL_HOURS)
        if ttl <= timedelta(0):
            raise InvalidTTL("Access code lifetime must be positive")
        if ttl > timedelta(hours=settings.ACCESS_CODE_MAX_TTL_HOURS):
            raise InvalidTTL(
                f"Access code lifetime cannot exceed {settings.ACCESS_CODE_MAX_TTL_HOURS} hours"
            )
        return ttl

    @staticmethod
    def _check_resource_type(resource_type: str) -> None:
        if resource_type not in ROLE_FOR_RESOURCE:
            allowed = ", ".join(sorted(ROLE_FOR_RESOURCE))
            raise UnsupportedResourceType(f"Resource type must be one of: {allowed}")

    async def _check_email(self, target_email: str) -> str:
        email = target_email.strip()
        if not is_valid_email(email):
            raise InvalidEmail("Email address is malformed")
        existing = await bounded(self.credentials.find_by_email(email), "email lookup")
        if existing is not None:
            raise InvalidEmail("Email address is already registered")
        return email

    async def _persist(
        self, resource_type: str, resource_id: str, email: str, ttl: timedelta
    ) -> IssuedCode:
        issued_at = self.clock()
        expires_at = issued_at + ttl
        row: AccessCode | None = None

        for attempt in range(1, _MAX_CODE_ATTEMPTS + 1):
            code = generate_access_code()
            try:
                row = await bounded(
                    self.codes.create(
                        code=code,
                        resource_type=resource_type,
                        resource_id=resource_id,
                        target_email=email,
                        issued_at=issued_at,
                        expires_at=expires_at,
                    ),
                    "code persistence",
                )
                break
            except IntegrityError:
                logger.warning("Access code collision on attempt %d, regenerating", attempt)
            except (SQLAlchemyError, StoreUnavailable) as exc:
                logger.error(
                    "Could not persist access code for %s/%s; resource is unclaimed: %s",
                    resource_type,
                    resource_id,
                    exc,
                )
                raise StoreUnavailable(
                    f"Access code for {resource_type}/{resource_id} was not saved; retry"
                ) from exc

        if row is None:
            raise StoreUnavailable("Could not generate a unique access code")

        logger.info(
            "Issued access code %s for %s/%s (expires %s)",
            code_hint(row.code),
            resource_type,
            resource_id,
            expires_at.isoformat(),
        )
        return IssuedCode(
            resource_type=resource_type,
            resource_id=resource_id,
            code=row.code,
            target_email=email,
            expires_at=expires_at,
        )
