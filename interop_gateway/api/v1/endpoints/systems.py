"""
External system administration endpoints.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request

from interop_gateway.di import get_interop_service
from interop_gateway.models import ExternalSystemCreate, ExternalSystemUpdate, SystemType
from interop_gateway.services import InteropService
from interop_gateway.utils.logging_utils import log_structured

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/systems")
async def list_systems(
    type: Optional[SystemType] = None,
    is_active: Optional[bool] = None,
    service: InteropService = Depends(get_interop_service),
):
    systems = await service.list_systems(system_type=type, is_active=is_active)
    return {
        "status": "success",
        "systems": [system.public_dict() for system in systems],
        "count": len(systems),
    }


@router.post("/systems", status_code=201)
async def create_system(
    request: Request,
    body: ExternalSystemCreate,
    service: InteropService = Depends(get_interop_service),
):
    system = await service.create_system(body)
    log_structured("info", "External system registered", request=request, system_id=system.id, name=system.name)
    return system.public_dict()


@router.get("/systems/circuits")
async def circuit_status(service: InteropService = Depends(get_interop_service)):
    """Circuit breaker and rate window state for every loaded system."""
    return {"status": "success", "circuits": service.circuit_status()}


@router.get("/systems/{system_id}")
async def get_system(system_id: str, service: InteropService = Depends(get_interop_service)):
    system = await service.get_system(system_id)
    return system.public_dict()


@router.put("/systems/{system_id}")
async def update_system(
    request: Request,
    system_id: str,
    body: ExternalSystemUpdate,
    service: InteropService = Depends(get_interop_service),
):
    system = await service.update_system(system_id, body)
    log_structured("info", "External system updated", request=request, system_id=system_id)
    return system.public_dict()


@router.delete("/systems/{system_id}")
async def delete_system(
    request: Request,
    system_id: str,
    service: InteropService = Depends(get_interop_service),
):
    await service.delete_system(system_id)
    log_structured("info", "External system deleted", request=request, system_id=system_id)
    return {"status": "success", "deleted": system_id}


@router.post("/systems/{system_id}/test")
async def test_connection(system_id: str, service: InteropService = Depends(get_interop_service)):
    """Probe the system through the delivery gateway."""
    return await service.test_connection(system_id)


@router.get("/systems/{system_id}/sync-status")
async def sync_status(system_id: str, service: InteropService = Depends(get_interop_service)):
    view = await service.sync_status(system_id)
    return view.model_dump(mode="json")


@router.post("/systems/{system_id}/sync")
async def bulk_sync(
    system_id: str,
    payload: Dict[str, Any] = Body(default_factory=dict),
    service: InteropService = Depends(get_interop_service),
):
    """Send a bulk sync request to the system."""
    result = await service.bulk_sync(system_id, payload)
    return {"status": "success", **result}
