"""
Resource linker — narrow client for the external FHIR server.

Only two calls matter to onboarding: create a resource and get its id,
and fetch a resource by id.  ``capability`` backs the health check.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from fhirlink.core.config import settings
from fhirlink.core.exceptions import (
    ResourceCreationFailed,
    ResourceNotFound,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"


def _outcome_text(response: httpx.Response) -> str:
    """Best-effort diagnostics from an OperationOutcome body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    issues = body.get("issue") if isinstance(body, dict) else None
    if not issues:
        return str(body)[:200]
    return "; ".join(
        str(i.get("diagnostics") or i.get("code") or "") for i in issues if isinstance(i, dict)
    )


def _id_from_location(location: str | None) -> str | None:
    # e.g. http://fhir/Patient/123/_history/1
    if not location:
        return None
    parts = [p for p in location.split("/") if p]
    if "_history" in parts:
        parts = parts[: parts.index("_history")]
    return parts[-1] if parts else None


class FhirResourceLinker:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    @classmethod
    def from_settings(cls) -> "FhirResourceLinker":
        client = httpx.AsyncClient(
            base_url=settings.FHIR_SERVER_URL,
            timeout=settings.FHIR_TIMEOUT_SECONDS,
            headers={"Accept": FHIR_JSON},
        )
        return cls(client)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def create(self, resource_type: str, attributes: dict[str, Any]) -> str:
        """POST the attributes as a new resource and return the server-assigned id."""
        body = dict(attributes)
        body.setdefault("resourceType", resource_type)
        try:
            response = await self.client.post(
                f"/{resource_type}",
                json=body,
                headers={"Content-Type": FHIR_JSON},
            )
        except httpx.TimeoutException as exc:
            logger.error("FHIR create %s timed out", resource_type)
            raise UpstreamUnavailable("FHIR server timed out creating the resource") from exc
        except httpx.HTTPError as exc:
            logger.error("FHIR create %s failed: %s", resource_type, exc)
            raise UpstreamUnavailable() from exc

        if response.status_code >= 400:
            reason = _outcome_text(response)
            logger.warning(
                "FHIR server rejected %s (HTTP %s): %s",
                resource_type,
                response.status_code,
                reason,
            )
            raise ResourceCreationFailed(
                f"FHIR server rejected the {resource_type} resource: {reason}"
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None
        resource_id = payload.get("id") if isinstance(payload, dict) else None
        resource_id = resource_id or _id_from_location(response.headers.get("Location"))
        if not resource_id:
            raise ResourceCreationFailed("FHIR server did not return a resource id")

        logger.info("Created FHIR %s/%s", resource_type, resource_id)
        return str(resource_id)

    async def get(self, resource_type: str, resource_id: str) -> dict[str, Any]:
        try:
            response = await self.client.get(f"/{resource_type}/{resource_id}")
        except httpx.HTTPError as exc:
            logger.error("FHIR read %s/%s failed: %s", resource_type, resource_id, exc)
            raise UpstreamUnavailable() from exc

        if response.status_code in (404, 410):
            raise ResourceNotFound(f"{resource_type}/{resource_id} not found")
        if response.status_code >= 400:
            logger.error(
                "FHIR read %s/%s returned HTTP %s",
                resource_type,
                resource_id,
                response.status_code,
            )
            raise UpstreamUnavailable()
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("FHIR server returned malformed JSON") from exc

    async def capability(self) -> dict[str, Any]:
        """Fetch the server's CapabilityStatement from /metadata."""
        try:
            response = await self.client.get(
                "/metadata", timeout=settings.FHIR_HEALTH_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(str(exc) or "FHIR server unreachable") from exc
        if response.status_code != 200:
            raise UpstreamUnavailable(f"FHIR server returned HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("FHIR server returned malformed JSON") from exc
        if not isinstance(body, dict) or body.get("resourceType") != "CapabilityStatement":
            raise UpstreamUnavailable("FHIR server returned unexpected response")
        return body
