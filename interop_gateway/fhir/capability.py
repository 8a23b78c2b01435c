"""
Static FHIR CapabilityStatement for the gateway's REST surface.
"""

from typing import Any, Dict

FHIR_VERSION = "4.0.1"

SEARCH_PARAMS = [
    {"name": "patient", "type": "reference"},
    {"name": "_lastUpdated", "type": "date"},
    {"name": "_offset", "type": "number"},
    {"name": "_count", "type": "number"},
]

SUPPORTED_RESOURCES = {
    "Patient": ("read", "search-type", "create"),
    "Observation": ("read", "search-type"),
    "Encounter": ("read", "search-type"),
    "ServiceRequest": ("read", "search-type"),
    "MedicationRequest": ("read", "search-type"),
}


def build_capability_statement(software_name: str = "Clinical Interop Gateway", software_version: str = "1.0.0") -> Dict[str, Any]:
    return {
        "resourceType": "CapabilityStatement",
        "status": "active",
        "date": "2024-01-01",
        "kind": "instance",
        "software": {"name": software_name, "version": software_version},
        "fhirVersion": FHIR_VERSION,
        "format": ["json"],
        "rest": [
            {
                "mode": "server",
                "resource": [
                    {
                        "type": resource_type,
                        "interaction": [{"code": code} for code in interactions],
                        "searchParam": [dict(param) for param in SEARCH_PARAMS],
                    }
                    for resource_type, interactions in SUPPORTED_RESOURCES.items()
                ],
            }
        ],
    }
