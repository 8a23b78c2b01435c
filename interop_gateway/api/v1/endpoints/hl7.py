"""
HL7 v2.x message endpoints.

Receive, validate and generate HL7 messages and browse the message log.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from interop_gateway.database import HL7MessageLog
from interop_gateway.di import get_hl7_parser, get_interop_service, get_message_log
from interop_gateway.hl7 import HL7MessageParser
from interop_gateway.models import HL7GenerateRequest, HL7ReceiveRequest, HL7ValidateRequest
from interop_gateway.services import InteropService
from interop_gateway.utils.error_responses import get_correlation_id
from interop_gateway.utils.logging_utils import log_structured

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/hl7/receive")
async def receive_hl7_message(
    request: Request,
    body: HL7ReceiveRequest,
    service: InteropService = Depends(get_interop_service),
):
    """
    Receive and process an HL7 v2.x message.

    Parses the message, converts it to FHIR resources and stores them.
    Supports ADT, ORU and ORM message types; other types are logged only.
    """
    correlation_id = get_correlation_id(request)
    result = await service.process_inbound(
        body.message,
        source_system=body.source_system,
        rebroadcast=body.rebroadcast,
    )

    log_structured(
        "info",
        "HL7 message processed",
        correlation_id=correlation_id,
        message_type=result.message.event_type,
        message_id=result.message.message_id,
        resources=len(result.stored),
    )
    return {"status": "success", **result.to_dict()}


@router.post("/hl7/validate")
async def validate_hl7_message(
    body: HL7ValidateRequest,
    parser: HL7MessageParser = Depends(get_hl7_parser),
):
    """Check message structure without storing anything."""
    valid, errors, parsed = parser.validate(body.message)
    return {
        "valid": valid,
        "errors": errors,
        "message_type": parsed.event_type if parsed else None,
    }


@router.post("/hl7/generate")
async def generate_hl7_message(
    request: Request,
    body: HL7GenerateRequest,
    service: InteropService = Depends(get_interop_service),
):
    """Generate an ADT, ORU or ORM message and optionally send it to an external system."""
    result = await service.generate_outbound(
        body.message_type,
        body.patient,
        body.payload,
        destination=body.destination,
    )
    log_structured(
        "info",
        "HL7 message generated",
        request=request,
        message_type=result.message.message_type,
        message_id=result.message.message_id,
        destination=body.destination,
    )
    return {"status": "success", **result.to_dict()}


@router.get("/hl7/messages")
async def list_hl7_messages(
    direction: Optional[str] = Query(None, description="INBOUND or OUTBOUND"),
    status: Optional[str] = Query(None, description="RECEIVED, PROCESSED, FAILED or SENT"),
    message_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    message_log: HL7MessageLog = Depends(get_message_log),
):
    """List logged HL7 messages, newest first."""
    messages = await message_log.list(
        direction=direction,
        status=status,
        message_type=message_type,
        limit=limit,
    )
    return {
        "status": "success",
        "messages": [message.to_dict(include_raw=False) for message in messages],
        "count": len(messages),
    }


@router.get("/hl7/messages/{log_id}")
async def get_hl7_message(
    log_id: str,
    message_log: HL7MessageLog = Depends(get_message_log),
):
    """Get one logged HL7 message with its raw text and parsed structure."""
    message = await message_log.get(log_id)
    return {"status": "success", "message": message.to_dict()}
