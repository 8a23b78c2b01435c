"""
FHIR R4 REST endpoints backed by the local resource store.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from interop_gateway.di import get_interop_service
from interop_gateway.fhir import SUPPORTED_RESOURCES, build_capability_statement
from interop_gateway.models import PatientSyncRequest
from interop_gateway.services import InteropService
from interop_gateway.utils.logging_utils import log_structured

logger = logging.getLogger(__name__)

router = APIRouter()


def parse_last_updated(value: Optional[str]) -> Tuple[Optional[datetime], bool]:
    """
    Parse a ``_lastUpdated`` search value.

    Returns:
        (lower bound, inclusive); a bare date or datetime means ``ge``

    Raises:
        HTTPException: 400 for unsupported prefixes or unparseable dates
    """
    if not value:
        return None, True

    inclusive = True
    prefix = value[:2]
    if prefix in ("ge", "gt"):
        inclusive = prefix == "ge"
        value = value[2:]
    elif prefix.isalpha():
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported _lastUpdated prefix {prefix!r}; use ge or gt",
        )

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid _lastUpdated value {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed, inclusive


def _require_supported(resource_type: str) -> None:
    if resource_type not in SUPPORTED_RESOURCES:
        raise HTTPException(
            status_code=404,
            detail=f"Resource type {resource_type} is not supported",
        )


@router.get("/fhir/metadata")
async def capability_statement():
    """FHIR CapabilityStatement for this server."""
    return build_capability_statement()


@router.post("/fhir/Patient", status_code=201)
async def create_patient(
    request: Request,
    resource: Dict[str, Any] = Body(...),
    service: InteropService = Depends(get_interop_service),
):
    """Store a FHIR Patient; an id is assigned when the body has none."""
    stored = await service.create_patient(resource)
    log_structured("info", "FHIR Patient created", request=request, resource_id=stored.resource_id)
    return stored.data


@router.post("/fhir/sync/patient")
async def sync_patient(
    request: Request,
    body: PatientSyncRequest,
    service: InteropService = Depends(get_interop_service),
):
    """Push a patient to a registered FHIR server and keep the returned copy."""
    stored = await service.sync_patient(body.patient, body.system_id)
    log_structured(
        "info",
        "Patient synced to FHIR server",
        request=request,
        system_id=body.system_id,
        resource_id=stored.resource_id,
    )
    return {"status": "success", "resource": stored.data}


@router.get("/fhir/{resource_type}")
async def search_resources(
    resource_type: str,
    patient: Optional[str] = Query(None, description="Patient id"),
    last_updated: Optional[str] = Query(None, alias="_lastUpdated"),
    offset: int = Query(0, alias="_offset", ge=0),
    count: int = Query(20, alias="_count", ge=0, le=200),
    system_id: Optional[str] = Query(None, description="FHIR server to search before the local store"),
    service: InteropService = Depends(get_interop_service),
):
    """Search stored resources; returns a searchset Bundle."""
    _require_supported(resource_type)
    lower_bound, inclusive = parse_last_updated(last_updated)
    result = await service.search_resources(
        resource_type,
        patient_id=patient,
        last_updated_from=lower_bound,
        inclusive=inclusive,
        offset=offset,
        count=count,
        system_id=system_id,
    )
    return result.to_bundle()


@router.get("/fhir/{resource_type}/{resource_id}")
async def read_resource(
    resource_type: str,
    resource_id: str,
    system_id: Optional[str] = Query(None, description="FHIR server to read through"),
    service: InteropService = Depends(get_interop_service),
):
    _require_supported(resource_type)
    stored = await service.fetch_resource(resource_type, resource_id, system_id=system_id)
    return stored.data
