"""Pydantic models for domain records, HL7 payloads and API bodies."""

from interop_gateway.models.domain import (
    AddressRecord,
    LabResult,
    MedicalRecord,
    PatientRecord,
    Prescription,
    ProviderRecord,
)
from interop_gateway.models.hl7_payloads import ADTPayload, ObservationResult, ORMPayload, ORUPayload
from interop_gateway.models.external_system import (
    AuthType,
    Credentials,
    ExternalSystem,
    ExternalSystemCreate,
    ExternalSystemUpdate,
    SyncStatus,
    SyncStatusView,
    SystemType,
)
from interop_gateway.models.api import (
    HL7GenerateRequest,
    HL7ReceiveRequest,
    HL7ValidateRequest,
    PatientSyncRequest,
)

__all__ = [
    "AddressRecord",
    "LabResult",
    "MedicalRecord",
    "PatientRecord",
    "Prescription",
    "ProviderRecord",
    "ADTPayload",
    "ObservationResult",
    "ORMPayload",
    "ORUPayload",
    "AuthType",
    "Credentials",
    "ExternalSystem",
    "ExternalSystemCreate",
    "ExternalSystemUpdate",
    "SyncStatus",
    "SyncStatusView",
    "SystemType",
    "HL7GenerateRequest",
    "HL7ReceiveRequest",
    "HL7ValidateRequest",
    "PatientSyncRequest",
]
