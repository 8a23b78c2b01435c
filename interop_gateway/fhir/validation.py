"""
Minimal structural validation of FHIR documents before storage.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from interop_gateway.exceptions import InvalidResourceError

logger = logging.getLogger(__name__)

# Each requirement is a tuple of alternative element names; one must be present.
REQUIRED_ELEMENTS: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "Patient": (),
    "Observation": (("status",), ("code",)),
    "Encounter": (("status",), ("class",)),
    "ServiceRequest": (("status",), ("intent",), ("subject",)),
    "MedicationRequest": (
        ("status",),
        ("intent",),
        ("subject",),
        ("medicationCodeableConcept", "medicationReference"),
    ),
}


def missing_required_elements(resource: Dict[str, Any]) -> List[str]:
    """List required elements absent from ``resource``."""
    resource_type = resource.get("resourceType")
    if not resource_type:
        return ["resourceType is required"]
    issues = []
    for alternatives in REQUIRED_ELEMENTS.get(resource_type, ()):
        if not any(resource.get(name) not in (None, "", [], {}) for name in alternatives):
            issues.append(f"{resource_type}.{' or '.join(alternatives)} is required")
    return issues


def ensure_valid_resource(resource: Any, expected_type: Optional[str] = None) -> None:
    """
    Reject a resource that cannot be stored.

    Raises:
        InvalidResourceError: If ``resourceType`` is missing or differs from
            ``expected_type``, or a required element is absent
    """
    if not isinstance(resource, dict) or not resource.get("resourceType"):
        logger.warning("Rejected FHIR resource without resourceType")
        raise InvalidResourceError("FHIR resource is missing resourceType", issues=["resourceType is required"])

    resource_type = resource["resourceType"]
    if expected_type and resource_type != expected_type:
        raise InvalidResourceError(
            f"Expected {expected_type} resource, got {resource_type}",
            resource_type=resource_type,
            issues=[f"resourceType must be {expected_type}"],
        )

    issues = missing_required_elements(resource)
    if issues:
        logger.warning("Rejected %s resource: %s", resource_type, "; ".join(issues))
        raise InvalidResourceError(
            f"Invalid {resource_type} resource: {'; '.join(issues)}",
            resource_type=resource_type,
            issues=issues,
        )
