"""
FastAPI dependencies — store handles, services and auth guards.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Cookie, Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from fhirlink.core.config import settings
from fhirlink.core.exceptions import Forbidden, TokenInvalid
from fhirlink.models.account import Account, AccountRole
from fhirlink.services.issuer import AccessCodeIssuer
from fhirlink.services.redeemer import RegistrationRedeemer
from fhirlink.services.resource_linker import FhirResourceLinker
from fhirlink.services.sessions import AuthSessionIssuer
from fhirlink.stores.access_code_store import AccessCodeStore
from fhirlink.stores.credential_store import CredentialStore

# auto_error=False so we can fall back to the session cookie
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_PREFIX}/login", auto_error=False
)


# ── Store handles ───────────────────────────────────────────────────
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_resource_linker(request: Request) -> FhirResourceLinker:
    return request.app.state.resource_linker


def get_access_code_store(db: AsyncSession = Depends(get_db)) -> AccessCodeStore:
    return AccessCodeStore(db)


def get_credential_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


# ── Services ────────────────────────────────────────────────────────
def get_issuer(
    codes: AccessCodeStore = Depends(get_access_code_store),
    credentials: CredentialStore = Depends(get_credential_store),
    linker: FhirResourceLinker = Depends(get_resource_linker),
) -> AccessCodeIssuer:
    return AccessCodeIssuer(codes, credentials, linker)


def get_redeemer(
    codes: AccessCodeStore = Depends(get_access_code_store),
    credentials: CredentialStore = Depends(get_credential_store),
) -> RegistrationRedeemer:
    return RegistrationRedeemer(codes, credentials)


def get_session_issuer(
    credentials: CredentialStore = Depends(get_credential_store),
) -> AuthSessionIssuer:
    return AuthSessionIssuer(credentials)


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_account(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),  # HttpOnly cookie
    credentials: CredentialStore = Depends(get_credential_store),
) -> Account:
    """Verify the session token from Header OR Cookie and load the account."""

    # Priority: Header > Cookie
    final_token = token
    if not final_token and access_token:
        # Cookie is set as "Bearer <token>"
        if access_token.startswith("Bearer "):
            final_token = access_token.split(" ", 1)[1]
        else:
            final_token = access_token

    if not final_token:
        raise TokenInvalid()

    claims = AuthSessionIssuer.verify(final_token)
    account = await credentials.get(claims.account_id)
    if account is None:
        raise TokenInvalid()
    return account


async def get_current_active_account(
    current: Account = Depends(get_current_account),
) -> Account:
    """Reject disabled or pending accounts."""
    if not current.is_active:
        raise Forbidden("Account is not active")
    return current


async def require_admin(
    current: Account = Depends(get_current_active_account),
) -> Account:
    """Only allow the admin role to proceed."""
    if current.role != AccountRole.ADMIN.value:
        raise Forbidden()
    return current
