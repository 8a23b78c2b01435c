"""
Internal domain records fed to the gateway by the hospital CRUD services.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AddressRecord(BaseModel):
    """Postal address"""
    line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class ProviderRecord(BaseModel):
    """Practitioner reference (doctor, ordering provider)"""
    id: str
    family_name: Optional[str] = None
    given_name: Optional[str] = None
    prefix: Optional[str] = None


class PatientRecord(BaseModel):
    """Patient demographics"""
    id: str
    mrn: Optional[str] = None
    first_name: str
    last_name: str
    middle_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[AddressRecord] = None
    is_active: bool = True

    @property
    def identifier(self) -> str:
        """Medical record number, falling back to the internal id."""
        return self.mrn or self.id


class MedicalRecord(BaseModel):
    """A clinical visit"""
    id: str
    patient_id: str
    doctor: Optional[ProviderRecord] = None
    visit_date: datetime
    visit_type: Optional[str] = None
    diagnosis: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class LabResult(BaseModel):
    """One measured lab parameter"""
    id: str
    patient_id: str
    test_code: Optional[str] = None
    parameter: str
    value: str
    units: Optional[str] = None
    reference_range: Optional[str] = None
    flag: Optional[str] = None
    status: str = "FINAL"
    performed_at: Optional[datetime] = None


class Prescription(BaseModel):
    """A medication order"""
    id: str
    patient_id: str
    doctor: Optional[ProviderRecord] = None
    medication_name: str
    medication_code: Optional[str] = None
    dosage: str
    frequency: Optional[str] = None
    route: Optional[str] = None
    duration_days: Optional[int] = None
    quantity: Optional[int] = None
    status: str = "ACTIVE"
    prescribed_at: Optional[datetime] = None
