"""Pydantic schemas for the health endpoint."""

from __future__ import annotations

from pydantic import BaseModel


class FhirServerHealth(BaseModel):
    status: str
    message: str
    name: str | None = None
    fhir_version: str | None = None


class HealthResponse(BaseModel):
    status: str
    db: bool
    fhir: FhirServerHealth
