"""
Compliance audit event definitions for interoperability traffic.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

SYSTEM_ACTOR = "system"


class AuditAction(str, Enum):
    """Actions recorded by the gateway."""
    HL7_MESSAGE_RECEIVED = "HL7_MESSAGE_RECEIVED"
    HL7_MESSAGE_GENERATED = "HL7_MESSAGE_GENERATED"
    HL7_TRANSMISSION_FAILED = "HL7_TRANSMISSION_FAILED"
    FHIR_RESOURCE_STORED = "FHIR_RESOURCE_STORED"
    FHIR_RESOURCE_FORWARDED = "FHIR_RESOURCE_FORWARDED"
    FHIR_SYNC_FAILED = "FHIR_SYNC_FAILED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    EXTERNAL_SYSTEM_CHANGED = "EXTERNAL_SYSTEM_CHANGED"


class ComplianceFlag(str, Enum):
    HL7_TRANSMISSION = "HL7_TRANSMISSION"
    FHIR_SYNC = "FHIR_SYNC"
    SYSTEM_INTEGRATION = "SYSTEM_INTEGRATION"
    PHI_STORAGE = "PHI_STORAGE"
    PHI_DISCLOSURE = "PHI_DISCLOSURE"
    CONFIGURATION = "CONFIGURATION"


@dataclass
class ComplianceEvent:
    """
    A single audit record.

    ``user_id`` of None means the action was taken by the gateway itself.
    """
    action: AuditAction
    resource: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    compliance_flags: List[ComplianceFlag] = field(default_factory=list)
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def actor(self) -> str:
        return self.user_id or SYSTEM_ACTOR

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["compliance_flags"] = [flag.value for flag in self.compliance_flags]
        data["timestamp"] = self.timestamp.isoformat()
        data["actor"] = self.actor
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)
