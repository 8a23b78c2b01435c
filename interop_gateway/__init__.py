"""
Clinical interoperability gateway.

HL7 v2.x parsing and generation, FHIR R4 mapping and resilient delivery to
registered external systems.
"""

__version__ = "1.0.0"
