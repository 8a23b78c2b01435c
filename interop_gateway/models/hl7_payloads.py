"""
Type-specific payloads for outbound HL7 message generation.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from interop_gateway.models.domain import ProviderRecord


class ADTPayload(BaseModel):
    """Admission/discharge/transfer event (PV1 content)"""
    trigger_event: str = "A01"
    patient_class: str = "O"
    assigned_location: Optional[str] = None
    admission_type: Optional[str] = None
    attending_doctor: Optional[ProviderRecord] = None
    visit_number: Optional[str] = None
    admit_datetime: Optional[datetime] = None
    discharge_datetime: Optional[datetime] = None


class ObservationResult(BaseModel):
    """One OBX result line"""
    code: str
    name: Optional[str] = None
    coding_system: Optional[str] = None
    value: str
    value_type: Optional[str] = None
    units: Optional[str] = None
    reference_range: Optional[str] = None
    flag: Optional[str] = None
    status: str = "F"
    observed_at: Optional[datetime] = None


class ORUPayload(BaseModel):
    """Observation result report (OBR + OBX content)"""
    trigger_event: str = "R01"
    placer_order_number: Optional[str] = None
    filler_order_number: Optional[str] = None
    test_code: str
    test_name: Optional[str] = None
    coding_system: Optional[str] = None
    observation_datetime: Optional[datetime] = None
    result_status: str = "F"
    results: List[ObservationResult] = Field(default_factory=list)


class ORMPayload(BaseModel):
    """General order (ORC + OBR content)"""
    trigger_event: str = "O01"
    order_control: str = "NW"
    placer_order_number: str
    filler_order_number: Optional[str] = None
    order_status: Optional[str] = None
    test_code: str
    test_name: Optional[str] = None
    coding_system: Optional[str] = None
    priority: str = "R"
    requested_datetime: Optional[datetime] = None
    ordering_provider: Optional[ProviderRecord] = None
    clinical_info: Optional[str] = None
