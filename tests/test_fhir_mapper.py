"""
Tests for domain record to FHIR mapping.
"""

from datetime import date, datetime, timezone

import pytest

from interop_gateway.fhir.mapper import DomainToFHIRMapper
from interop_gateway.fhir.terminology import LOINC_SYSTEM, RXNORM_SYSTEM
from interop_gateway.fhir.validation import ensure_valid_resource
from interop_gateway.models import (
    AddressRecord,
    LabResult,
    MedicalRecord,
    PatientRecord,
    Prescription,
    ProviderRecord,
)


@pytest.fixture
def mapper():
    return DomainToFHIRMapper()


def test_patient_to_fhir(mapper):
    patient = PatientRecord(
        id="pat-7",
        mrn="MRN7",
        first_name="Lee",
        middle_name="A",
        last_name="Chan",
        date_of_birth=date(1990, 1, 31),
        gender="MALE",
        phone="555-0111",
        email="lee@example.org",
        address=AddressRecord(line="1 Elm", city="Austin", state="TX", postal_code="73301"),
    )
    mapped = mapper.patient_to_fhir(patient)

    assert mapped.valid
    data = mapped.data
    assert data["id"] == "pat-7"
    assert data["identifier"][0]["value"] == "MRN7"
    assert data["name"][0] == {"use": "official", "family": "Chan", "given": ["Lee", "A"]}
    assert data["gender"] == "male"
    assert data["birthDate"] == "1990-01-31"
    assert {"system": "email", "value": "lee@example.org"} in data["telecom"]
    assert data["address"][0]["postalCode"] == "73301"
    ensure_valid_resource(data, expected_type="Patient")


def test_minimal_patient_omits_empty_elements(mapper):
    data = mapper.patient_to_fhir(PatientRecord(id="p1", first_name="A", last_name="B")).data

    assert "telecom" not in data
    assert "address" not in data
    assert "birthDate" not in data


def test_medical_record_to_encounter(mapper):
    record = MedicalRecord(
        id="visit-1",
        patient_id="pat-7",
        doctor=ProviderRecord(id="doc-1", family_name="House", given_name="Greg"),
        visit_date=datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc),
        visit_type="EMERGENCY",
        diagnosis=["Migraine"],
    )
    data = mapper.medical_record_to_encounter(record).data

    assert data["status"] == "finished"
    assert data["class"]["code"] == "EMER"
    assert data["subject"] == {"reference": "Patient/pat-7"}
    assert data["participant"][0]["individual"]["reference"] == "Practitioner/doc-1"
    assert data["reasonCode"] == [{"text": "Migraine"}]
    assert data["period"]["start"] == "2024-02-01T09:00:00+00:00"


def test_lab_result_to_observation(mapper):
    result = LabResult(
        id="lab-1",
        patient_id="pat-7",
        test_code="2345-7",
        parameter="Glucose",
        value="180",
        units="mg/dL",
        flag="HIGH",
    )
    mapped = mapper.lab_result_to_observation(result)

    assert mapped.valid
    data = mapped.data
    assert data["status"] == "final"
    assert data["code"]["coding"][0] == {"display": "Glucose", "system": LOINC_SYSTEM, "code": "2345-7"}
    assert data["valueQuantity"]["value"] == 180
    assert data["interpretation"][0]["coding"][0]["code"] == "H"


def test_lab_result_text_value(mapper):
    result = LabResult(id="lab-2", patient_id="p", parameter="Culture", value="no growth", status="PRELIMINARY")
    data = mapper.lab_result_to_observation(result).data

    assert data["valueString"] == "no growth"
    assert data["status"] == "preliminary"
    assert "interpretation" not in data


def test_prescription_to_medication_request(mapper):
    prescription = Prescription(
        id="rx-1",
        patient_id="pat-7",
        medication_name="Amoxicillin",
        medication_code="723",
        dosage="500 mg",
        frequency="every 8 hours",
        route="oral",
        duration_days=10,
        quantity=30,
    )
    mapped = mapper.prescription_to_medication_request(prescription)

    assert mapped.valid
    data = mapped.data
    assert data["status"] == "active"
    assert data["intent"] == "order"
    assert data["medicationCodeableConcept"]["coding"][0]["system"] == RXNORM_SYSTEM
    assert data["dosageInstruction"][0]["text"] == "500 mg every 8 hours"
    assert data["dosageInstruction"][0]["route"] == {"text": "oral"}
    assert data["dispenseRequest"]["quantity"] == {"value": 30}
    assert data["dispenseRequest"]["expectedSupplyDuration"]["value"] == 10
