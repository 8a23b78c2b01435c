"""
HTTP transport to a single external system.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from interop_gateway.models.external_system import AuthType, ExternalSystem, SystemType

logger = logging.getLogger(__name__)

HL7_CONTENT_TYPE = "application/hl7-v2"
FHIR_CONTENT_TYPE = "application/fhir+json"


def auth_headers(system: ExternalSystem) -> Dict[str, str]:
    """Authentication headers for a system's configured auth type."""
    credentials = system.credentials
    if system.auth_type == AuthType.BASIC and credentials.username:
        token = base64.b64encode(f"{credentials.username}:{credentials.password or ''}".encode()).decode()
        return {"Authorization": f"Basic {token}"}
    if system.auth_type == AuthType.BEARER and (credentials.token or credentials.api_key):
        return {"Authorization": f"Bearer {credentials.token or credentials.api_key}"}
    if system.auth_type == AuthType.API_KEY and credentials.api_key:
        return {"X-API-Key": credentials.api_key}
    return {}


class SystemClient:
    """
    httpx client bound to one external system.

    Every method raises ``httpx.HTTPError`` on transport errors and non-2xx
    responses so the gateway can count and retry them.
    """

    def __init__(
        self,
        system: ExternalSystem,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.system = system
        self.session = httpx.AsyncClient(
            base_url=system.base_url.rstrip("/"),
            timeout=timeout,
            headers={"Accept": FHIR_CONTENT_TYPE, **auth_headers(system)},
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        content: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        response = await self.session.request(
            method,
            path,
            json=json,
            content=content,
            params=params,
            headers=headers,
        )
        response.raise_for_status()
        return response

    async def send_hl7(self, message: str) -> Dict[str, Any]:
        response = await self.request(
            "POST",
            "/hl7",
            content=message,
            headers={"Content-Type": HL7_CONTENT_TYPE},
        )
        return {"status_code": response.status_code, "body": response.text}

    async def create_resource(self, resource_type: str, resource: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.request(
            "POST", f"/{resource_type}", json=resource, headers={"Content-Type": FHIR_CONTENT_TYPE}
        )
        return response.json() if response.content else dict(resource)

    async def update_resource(self, resource_type: str, resource_id: str, resource: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.request(
            "PUT",
            f"/{resource_type}/{resource_id}",
            json=resource,
            headers={"Content-Type": FHIR_CONTENT_TYPE},
        )
        return response.json() if response.content else dict(resource)

    async def read_resource(self, resource_type: str, resource_id: str) -> Dict[str, Any]:
        response = await self.request("GET", f"/{resource_type}/{resource_id}")
        return response.json()

    async def search(self, resource_type: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self.request("GET", f"/{resource_type}", params=params)
        return response.json()

    async def probe(self) -> Dict[str, Any]:
        """Lightweight health check: ``/metadata`` for FHIR servers, ``/health`` otherwise."""
        path = "/metadata" if self.system.type == SystemType.FHIR_SERVER else "/health"
        response = await self.request("GET", path)
        return {"status_code": response.status_code, "path": path}

    async def bulk_sync(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.request("POST", "/sync", json=payload)
        return response.json() if response.content else {"status_code": response.status_code}

    async def aclose(self) -> None:
        await self.session.aclose()
