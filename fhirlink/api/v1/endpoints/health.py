"""
Health endpoint — service liveness, database, and the FHIR server.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fhirlink.api.v1.deps import get_db, get_resource_linker
from fhirlink.core.exceptions import UpstreamUnavailable
from fhirlink.schemas.health import FhirServerHealth, HealthResponse
from fhirlink.services.resource_linker import FhirResourceLinker

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health(
    db: AsyncSession = Depends(get_db),
    linker: FhirResourceLinker = Depends(get_resource_linker),
) -> HealthResponse:
    """Public health check — DB and FHIR server connectivity."""
    db_ok = False
    try:
        await db.execute(select(1))
        db_ok = True
    except Exception as e:
        logger.error("Health check DB failure: %s", e)

    try:
        capability = await linker.capability()
        fhir = FhirServerHealth(
            status="healthy",
            message="FHIR server is available and responding",
            name=capability.get("name") or "FHIR Server",
            fhir_version=capability.get("fhirVersion") or "unknown",
        )
    except UpstreamUnavailable as e:
        logger.error("Health check FHIR failure: %s", e.detail)
        fhir = FhirServerHealth(status="unhealthy", message=e.detail)

    status = "ok" if db_ok and fhir.status == "healthy" else "degraded"
    return HealthResponse(status=status, db=db_ok, fhir=fhir)
