"""
Resource onboarding endpoints (admin only).

- POST /resource/{type}                      create the FHIR resource + issue a code
- POST /resource/{type}/{id}/access-code     issue a fresh code for an existing resource
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from fhirlink.api.v1.deps import get_issuer, require_admin
from fhirlink.models.account import Account
from fhirlink.schemas.access_code import IssuedCodeRead
from fhirlink.services.issuer import AccessCodeIssuer

router = APIRouter(prefix="/resource", tags=["resources"])
logger = logging.getLogger(__name__)


def _ttl(ttl_hours: int | None) -> timedelta | None:
    return timedelta(hours=ttl_hours) if ttl_hours is not None else None


@router.post("/{resource_type}", response_model=IssuedCodeRead, status_code=201)
async def create_resource_with_code(
    resource_type: str,
    email: str = Query(..., description="Registrant the code is issued for"),
    ttl_hours: int | None = Query(None, description="Code lifetime; server default when omitted"),
    attributes: dict[str, Any] = Body(..., description="FHIR resource body, forwarded verbatim"),
    issuer: AccessCodeIssuer = Depends(get_issuer),
    admin: Account = Depends(require_admin),
) -> IssuedCodeRead:
    """Create a FHIR resource and return its id with a one-time access code."""
    logger.info("Admin %s issuing %s access code", admin.id, resource_type)
    issued = await issuer.issue_code(resource_type, attributes, email, _ttl(ttl_hours))
    return IssuedCodeRead.model_validate(issued)


@router.post(
    "/{resource_type}/{resource_id}/access-code",
    response_model=IssuedCodeRead,
    status_code=201,
)
async def reissue_code(
    resource_type: str,
    resource_id: str,
    email: str = Query(...),
    ttl_hours: int | None = Query(None),
    issuer: AccessCodeIssuer = Depends(get_issuer),
    admin: Account = Depends(require_admin),
) -> IssuedCodeRead:
    """Issue a new code for a resource that exists but has no account yet."""
    logger.info("Admin %s re-issuing code for %s/%s", admin.id, resource_type, resource_id)
    issued = await issuer.reissue_code(resource_type, resource_id, email, _ttl(ttl_hours))
    return IssuedCodeRead.model_validate(issued)
