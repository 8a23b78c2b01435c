"""
Date conversions between HL7 TS/DT values and FHIR date/dateTime strings.
"""

import re
from datetime import date, datetime, timezone
from typing import Optional

_HL7_TS = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})?(?P<day>\d{2})?"
    r"(?:(?P<hour>\d{2})(?P<minute>\d{2})?(?P<second>\d{2})?(?:\.\d+)?)?"
    r"(?P<tz>[+-]\d{4})?$"
)


def hl7_to_fhir_date(value: Optional[str]) -> Optional[str]:
    """Parse HL7 date format (YYYY[MM[DD]]) to a FHIR date."""
    if not value:
        return None
    match = _HL7_TS.match(value.strip())
    if not match:
        return None
    parts = [match.group("year")]
    for key in ("month", "day"):
        if not match.group(key):
            break
        parts.append(match.group(key))
    return "-".join(parts)


def hl7_to_fhir_datetime(value: Optional[str]) -> Optional[str]:
    """
    Parse an HL7 timestamp (YYYYMMDD[HHMM[SS]][+/-ZZZZ]) to a FHIR dateTime.

    Values without a time part become dates. Values without an offset are
    taken as UTC.
    """
    if not value:
        return None
    match = _HL7_TS.match(value.strip())
    if not match:
        return None
    if not match.group("hour"):
        return hl7_to_fhir_date(value)
    tz = match.group("tz")
    offset = f"{tz[:3]}:{tz[3:]}" if tz else "Z"
    return (
        f"{match.group('year')}-{match.group('month')}-{match.group('day')}"
        f"T{match.group('hour')}:{match.group('minute') or '00'}:{match.group('second') or '00'}{offset}"
    )


def to_fhir_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def to_fhir_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()
