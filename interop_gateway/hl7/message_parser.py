"""
HL7 v2.x message parser.

Parses pipe-delimited HL7 v2.x messages into typed segment records.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import hl7

from interop_gateway.exceptions import MalformedMessageError
from interop_gateway.hl7.segments import SegmentRecord, Separators, segment_class_for

logger = logging.getLogger(__name__)

MIN_MSH_FIELDS = 12

# Segments a message of the given type cannot be converted without.
REQUIRED_SEGMENTS: Dict[str, Tuple[str, ...]] = {
    "ADT": ("PID",),
    "ORU": ("PID", "OBX"),
    "ORM": ("PID", "OBR"),
}


@dataclass
class ParsedMessage:
    """Structured view of an HL7 message. ``header_fields[n]`` is MSH.n."""

    message_type: str
    trigger_event: Optional[str]
    message_id: str
    version: str
    sending_application: Optional[str]
    sending_facility: Optional[str]
    receiving_application: Optional[str]
    receiving_facility: Optional[str]
    timestamp: Optional[str]
    processing_id: Optional[str]
    header_fields: List[str]
    segments: "OrderedDict[str, List[SegmentRecord]]"
    ordered_segments: List[SegmentRecord]
    separators: Separators
    raw: str = field(repr=False, default="")

    @property
    def event_type(self) -> str:
        if self.trigger_event:
            return f"{self.message_type}^{self.trigger_event}"
        return self.message_type

    @property
    def segment_count(self) -> int:
        return 1 + sum(len(records) for records in self.segments.values())

    def segment(self, name: str) -> Optional[SegmentRecord]:
        """First segment of type ``name``, if any."""
        records = self.segments.get(name)
        return records[0] if records else None

    def segments_of(self, name: str) -> List[SegmentRecord]:
        return list(self.segments.get(name, []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_type": self.message_type,
            "trigger_event": self.trigger_event,
            "message_id": self.message_id,
            "version": self.version,
            "sending_application": self.sending_application,
            "sending_facility": self.sending_facility,
            "receiving_application": self.receiving_application,
            "receiving_facility": self.receiving_facility,
            "timestamp": self.timestamp,
            "processing_id": self.processing_id,
            "segments": {
                name: [record.to_dict() for record in records]
                for name, records in self.segments.items()
            },
        }


def _normalize(message: str) -> str:
    text = message.replace("\r\n", "\r").replace("\n", "\r")
    return "\r".join(segment for segment in text.split("\r") if segment.strip())


class HL7MessageParser:
    """Parser for HL7 v2.x messages."""

    def parse(self, message: str) -> ParsedMessage:
        """
        Parse an HL7 v2.x message string.

        Args:
            message: Raw HL7 v2.x message (pipe-delimited, ``\\r`` terminated)

        Returns:
            ParsedMessage with the header metadata and every segment after MSH,
            grouped by segment name in arrival order.

        Raises:
            MalformedMessageError: If the message does not start with ``MSH|``,
                its MSH segment is too short, or it cannot be tokenized
        """
        if not message or not message.startswith("MSH|"):
            raise MalformedMessageError("HL7 message must start with 'MSH|'")

        text = _normalize(message)
        msh_text = text.split("\r", 1)[0]
        separators = Separators.from_msh(msh_text)
        msh_fields = msh_text.split(separators.field)
        if len(msh_fields) < MIN_MSH_FIELDS:
            raise MalformedMessageError(
                f"MSH segment has {len(msh_fields)} fields, at least {MIN_MSH_FIELDS} required"
            )

        try:
            parsed = hl7.parse(text)
        except (hl7.ParseException, ValueError, IndexError) as e:
            logger.error("Error tokenizing HL7 message: %s", e)
            raise MalformedMessageError(f"Failed to parse HL7 message: {e}") from e

        header_fields = [str(value) for value in parsed[0]]
        message_type_field = header_fields[9] if len(header_fields) > 9 else ""
        type_parts = message_type_field.split(separators.component)

        segments: "OrderedDict[str, List[SegmentRecord]]" = OrderedDict()
        ordered: List[SegmentRecord] = []
        for segment in parsed[1:]:
            fields = [str(value) for value in segment]
            name = fields[0]
            record = segment_class_for(name).from_fields(fields, separators, parsed.unescape)
            segments.setdefault(name, []).append(record)
            ordered.append(record)

        def header(position: int) -> Optional[str]:
            value = header_fields[position] if len(header_fields) > position else ""
            return value or None

        result = ParsedMessage(
            message_type=type_parts[0],
            trigger_event=type_parts[1] if len(type_parts) > 1 and type_parts[1] else None,
            message_id=header(10) or "",
            version=header(12) or "",
            sending_application=header(3),
            sending_facility=header(4),
            receiving_application=header(5),
            receiving_facility=header(6),
            timestamp=header(7),
            processing_id=header(11),
            header_fields=header_fields,
            segments=segments,
            ordered_segments=ordered,
            separators=separators,
            raw=message,
        )
        logger.debug(
            "Parsed HL7 %s message %s with %d segments",
            result.event_type,
            result.message_id,
            result.segment_count,
        )
        return result

    def validate(self, message: str) -> Tuple[bool, List[str], Optional[ParsedMessage]]:
        """
        Check a message without raising.

        Returns:
            ``(valid, errors, parsed)``; ``parsed`` is None when the message
            could not be parsed at all.
        """
        try:
            parsed = self.parse(message)
        except MalformedMessageError as e:
            return False, [e.message], None

        errors = []
        if not parsed.message_type:
            errors.append("Missing message type in MSH.9")
        if not parsed.message_id:
            errors.append("Missing message control ID in MSH.10")
        for name in REQUIRED_SEGMENTS.get(parsed.message_type, ()):
            if name not in parsed.segments:
                errors.append(f"{parsed.message_type} message is missing a {name} segment")
        return not errors, errors, parsed
