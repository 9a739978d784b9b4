"""
Access code inspection.

- POST /access-codes/verify is public and never consumes the code.
- Listing and the expiry sweep are admin-only.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query

from fhirlink.api.v1.deps import get_access_code_store, get_redeemer, require_admin
from fhirlink.models.access_code import AccessCode, CodeState
from fhirlink.models.account import Account
from fhirlink.schemas.access_code import (
    AccessCodeRead,
    SweepResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from fhirlink.services.redeemer import RegistrationRedeemer
from fhirlink.stores.access_code_store import AccessCodeStore

router = APIRouter(prefix="/access-codes", tags=["access-codes"])


def _read(row: AccessCode, now: datetime) -> AccessCodeRead:
    return AccessCodeRead(
        id=row.id,
        code=row.code,
        target_resource_type=row.target_resource_type,
        target_resource_id=row.target_resource_id,
        target_email=row.target_email,
        state=row.state(now).value,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        consumed_at=row.consumed_at,
    )


@router.post("/verify", response_model=VerifyCodeResponse)
async def verify_code(
    body: VerifyCodeRequest,
    redeemer: RegistrationRedeemer = Depends(get_redeemer),
) -> VerifyCodeResponse:
    """Check that a code can still be redeemed."""
    row = await redeemer.check_code(body.code.strip())
    return VerifyCodeResponse(
        resource_type=row.target_resource_type,
        state=CodeState.ACTIVE.value,
        expires_at=row.expires_at,
    )


@router.get("", response_model=list[AccessCodeRead])
async def list_codes(
    state: CodeState | None = Query(None),
    resource_type: str | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    codes: AccessCodeStore = Depends(get_access_code_store),
    _admin: Account = Depends(require_admin),
) -> list[AccessCodeRead]:
    """List codes, newest first, optionally filtered by derived state."""
    now = datetime.now(timezone.utc)
    rows = await codes.list(now, state=state, resource_type=resource_type, limit=limit, offset=skip)
    return [_read(row, now) for row in rows]


@router.post("/sweep", response_model=SweepResponse)
async def sweep_expired(
    codes: AccessCodeStore = Depends(get_access_code_store),
    _admin: Account = Depends(require_admin),
) -> SweepResponse:
    """Report codes that lapsed without being redeemed."""
    lapsed = await codes.expire_sweep(datetime.now(timezone.utc))
    return SweepResponse(expired=len(lapsed))
