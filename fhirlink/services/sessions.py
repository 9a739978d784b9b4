"""
Auth session issuer — password login and session token verification.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from fhirlink.core.exceptions import InvalidCredentials, TokenInvalid
from fhirlink.core.security import (
    bounded,
    check_password,
    create_access_token,
    decode_access_token,
)
from fhirlink.models.account import Account
from fhirlink.stores.credential_store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionClaims:
    account_id: int
    role: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class SessionGrant:
    token: str
    expires_at: datetime
    account: Account


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthSessionIssuer:
    def __init__(
        self,
        credentials: CredentialStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.credentials = credentials
        self.clock = clock

    async def authenticate(self, email: str, password: str) -> SessionGrant:
        """Check credentials and issue a session token.

        Unknown email, wrong password and a non-active account all raise
        the same :class:`InvalidCredentials`, after the same hashing work.
        """
        account = await bounded(self.credentials.find_by_email(email), "account lookup")
        hashed = account.hashed_password if account is not None else None
        password_ok = await check_password(password, hashed)

        if account is None or not password_ok or not account.is_active:
            logger.info("Failed login attempt")
            raise InvalidCredentials()

        token, expires_at = create_access_token(account.id, account.role, now=self.clock())
        logger.info("Account %s logged in", account.id)
        return SessionGrant(token=token, expires_at=expires_at, account=account)

    @staticmethod
    def verify(token: str) -> SessionClaims:
        """Validate signature and expiry; raises TokenExpired / TokenInvalid."""
        payload = decode_access_token(token)
        try:
            return SessionClaims(
                account_id=int(payload["sub"]),
                role=str(payload["role"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc
