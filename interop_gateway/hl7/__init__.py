"""
HL7 v2.x message processing module.

Provides parsing, generation and routing of HL7 v2.x messages.
"""

from .message_generator import GeneratedMessage, HL7MessageGenerator
from .message_parser import HL7MessageParser, ParsedMessage
from .message_router import HL7MessageRouter
from .segments import (
    Address,
    CodedElement,
    OBRSegment,
    OBXSegment,
    ORCSegment,
    PersonName,
    Physician,
    PIDSegment,
    PV1Segment,
    RawSegment,
    SegmentRecord,
    Separators,
)

__all__ = [
    "GeneratedMessage",
    "HL7MessageGenerator",
    "HL7MessageParser",
    "ParsedMessage",
    "HL7MessageRouter",
    "Address",
    "CodedElement",
    "OBRSegment",
    "OBXSegment",
    "ORCSegment",
    "PersonName",
    "Physician",
    "PIDSegment",
    "PV1Segment",
    "RawSegment",
    "SegmentRecord",
    "Separators",
]
