"""
FHIR resource mapping.

Converts domain records and parsed HL7 messages to FHIR R4 resources.
"""

from .capability import SUPPORTED_RESOURCES, build_capability_statement
from .hl7_converter import HL7ToFHIRConverter
from .mapper import DomainToFHIRMapper
from .resources import MappedResource, derive_resource_id
from .validation import ensure_valid_resource, missing_required_elements

__all__ = [
    "SUPPORTED_RESOURCES",
    "build_capability_statement",
    "HL7ToFHIRConverter",
    "DomainToFHIRMapper",
    "MappedResource",
    "derive_resource_id",
    "ensure_valid_resource",
    "missing_required_elements",
]
