"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from fhirlink.api.v1.endpoints import access_codes, auth, health, resources

api_router = APIRouter()

# Registration, login, session, account management
api_router.include_router(auth.router)

# Resource creation + access code issuance
api_router.include_router(resources.router)

# Code verification, listing, sweep
api_router.include_router(access_codes.router)

# Liveness of the service and the FHIR server
api_router.include_router(health.router)
