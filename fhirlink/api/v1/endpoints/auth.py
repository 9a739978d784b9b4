"""
Auth endpoints — registration by access code, login, session and
account management.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from fhirlink.api.v1.deps import (
    get_credential_store,
    get_current_active_account,
    get_redeemer,
    get_session_issuer,
    require_admin,
)
from fhirlink.core.config import settings
from fhirlink.core.exceptions import InvalidEmail
from fhirlink.core.limiter import limiter
from fhirlink.core.security import check_password_strength, hash_password, is_valid_email
from fhirlink.models.account import Account, AccountRole, AccountStatus
from fhirlink.schemas.account import (
    AccountRead,
    AccountUpdate,
    AdminCreate,
    LoginRequest,
    RegisterRequest,
    RegisterResponse,
)
from fhirlink.schemas.token import LogoutResponse, Token
from fhirlink.services.redeemer import RegistrationRedeemer
from fhirlink.services.sessions import AuthSessionIssuer
from fhirlink.stores.credential_store import CredentialStore

router = APIRouter(tags=["auth"])


@router.post("/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(settings.REGISTER_RATE_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    redeemer: RegistrationRedeemer = Depends(get_redeemer),
) -> RegisterResponse:
    """Redeem an access code and create the linked account."""
    account = await redeemer.redeem(body.code, body.email, body.password, body.name)
    return RegisterResponse(
        account_id=account.id,
        role=account.role,
        resource_type=account.linked_resource_type,
        resource_id=account.linked_resource_id,
    )


@router.post("/login", response_model=Token)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    sessions: AuthSessionIssuer = Depends(get_session_issuer),
) -> Token:
    """Authenticate with email/password. Token in body and HttpOnly cookie."""
    grant = await sessions.authenticate(body.email, body.password)

    response.set_cookie(
        key="access_token",
        value=f"Bearer {grant.token}",
        httponly=True,
        secure=settings.COOKIE_SECURE,  # Set to True in HTTPS production
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )

    return Token(
        access_token=grant.token,
        expires_at=grant.expires_at,
        account=AccountRead.model_validate(grant.account),
    )


@router.post("/auth/logout", response_model=LogoutResponse)
async def logout(response: Response) -> LogoutResponse:
    """Clear the session cookie."""
    response.delete_cookie("access_token")
    return LogoutResponse(message="Logged out")


@router.get("/auth/me", response_model=AccountRead)
async def read_current_account(
    current: Account = Depends(get_current_active_account),
) -> Account:
    """Return the account behind the current session."""
    return current


# ── Account management (admin-only) ────────────────────────────────
@router.post("/auth/users", response_model=AccountRead, status_code=201)
async def create_admin(
    body: AdminCreate,
    credentials: CredentialStore = Depends(get_credential_store),
    _admin: Account = Depends(require_admin),
) -> Account:
    """Create an administrator account (no resource link)."""
    if not is_valid_email(body.email.strip()):
        raise InvalidEmail("Email address is malformed")
    check_password_strength(body.password)
    if await credentials.find_by_email(body.email):
        raise InvalidEmail("Email already registered")

    return await credentials.create(
        email=body.email,
        role=AccountRole.ADMIN,
        password_hash=await hash_password(body.password),
        display_name=body.display_name,
        status=AccountStatus.ACTIVE,
    )


@router.get("/auth/users", response_model=list[AccountRead])
async def list_accounts(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    credentials: CredentialStore = Depends(get_credential_store),
    _admin: Account = Depends(require_admin),
) -> list[Account]:
    return list(await credentials.list(skip=skip, limit=limit))


@router.patch("/auth/users/{account_id}", response_model=AccountRead)
async def update_account(
    account_id: int,
    body: AccountUpdate,
    credentials: CredentialStore = Depends(get_credential_store),
    _admin: Account = Depends(require_admin),
) -> Account:
    """Enable / disable an account or change its display name."""
    return await credentials.update(
        account_id, status=body.status, display_name=body.display_name
    )
