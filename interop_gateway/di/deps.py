from fastapi import Depends, Request

from interop_gateway.database import HL7MessageLog
from interop_gateway.hl7 import HL7MessageParser
from interop_gateway.services import InteropService

from .container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Service container not initialized")
    return container


def get_interop_service(
    container: ServiceContainer = Depends(get_container),
) -> InteropService:
    service = container.interop_service
    if service is None:
        raise RuntimeError("Interop service not initialized")
    return service


def get_hl7_parser(container: ServiceContainer = Depends(get_container)) -> HL7MessageParser:
    parser = container.parser
    if parser is None:
        raise RuntimeError("HL7 parser not initialized")
    return parser


def get_message_log(container: ServiceContainer = Depends(get_container)) -> HL7MessageLog:
    message_log = container.message_log
    if message_log is None:
        raise RuntimeError("HL7 message log not initialized")
    return message_log
