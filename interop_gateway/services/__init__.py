from .interop_service import InboundResult, InteropService, OutboundResult

__all__ = ["InboundResult", "InteropService", "OutboundResult"]
