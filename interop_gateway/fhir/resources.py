"""
Mapped FHIR resource container and identifier derivation.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

RESOURCE_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "urn:interop-gateway:fhir")

_FHIR_ID = re.compile(r"^[A-Za-z0-9\-.]{1,64}$")
_NUMBER = re.compile(r"^\s*[-+]?\d+(\.\d+)?\s*$")


@dataclass
class MappedResource:
    """
    A FHIR document produced by a mapper.

    ``issues`` lists required elements the source could not supply; such a
    resource is rejected by the store.
    """

    resource_type: str
    resource_id: str
    data: Dict[str, Any]
    patient_id: Optional[str] = None
    issues: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues

    @property
    def reference(self) -> str:
        return f"{self.resource_type}/{self.resource_id}"

    def summary(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "patient_id": self.patient_id,
            "valid": self.valid,
            "issues": list(self.issues),
        }


def derive_resource_id(prefix: str, *parts: Optional[str]) -> str:
    """Stable id for a resource from its source keys."""
    key = "|".join(part or "" for part in parts)
    return f"{prefix}-{uuid.uuid5(RESOURCE_ID_NAMESPACE, key)}"


def is_valid_fhir_id(value: Optional[str]) -> bool:
    return bool(value) and bool(_FHIR_ID.match(value))


def numeric_value(value: Optional[str]) -> Optional[Union[int, float]]:
    if value is None or not _NUMBER.match(value):
        return None
    text = value.strip()
    return float(text) if "." in text else int(text)


def reference(resource_type: str, resource_id: Optional[str]) -> Optional[Dict[str, str]]:
    if not resource_id:
        return None
    return {"reference": f"{resource_type}/{resource_id}"}
