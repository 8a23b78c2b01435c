from .container import ServiceContainer
from .deps import get_container, get_hl7_parser, get_interop_service, get_message_log

__all__ = [
    "ServiceContainer",
    "get_container",
    "get_hl7_parser",
    "get_interop_service",
    "get_message_log",
]
