"""
Tests for HL7 v2.x to FHIR conversion.
"""

import pytest

from interop_gateway.fhir.hl7_converter import HL7ToFHIRConverter
from interop_gateway.fhir.terminology import LOINC_SYSTEM, UCUM_SYSTEM
from interop_gateway.hl7.message_parser import HL7MessageParser

from samples import ADT_EXAMPLE, ORM_EXAMPLE, ORU_EXAMPLE


@pytest.fixture
def converter():
    return HL7ToFHIRConverter()


@pytest.fixture
def parser():
    return HL7MessageParser()


def test_oru_example_converts_to_observation(converter, parser):
    resources = converter.convert(parser.parse(ORU_EXAMPLE))

    assert len(resources) == 1
    observation = resources[0]
    assert observation.valid
    assert observation.resource_type == "Observation"
    assert observation.patient_id == "MRN123"

    data = observation.data
    assert data["status"] == "final"
    assert data["valueQuantity"]["value"] == 95
    assert data["valueQuantity"]["unit"] == "mg/dL"
    assert data["valueQuantity"]["system"] == UCUM_SYSTEM
    assert data["interpretation"][0]["coding"][0]["code"] == "N"
    assert data["subject"] == {"reference": "Patient/MRN123"}
    assert data["code"]["coding"][0]["code"] == "GLU"
    assert data["code"]["text"] == "Glucose"
    assert data["referenceRange"][0]["low"]["value"] == 70
    assert data["referenceRange"][0]["high"]["value"] == 110


def test_conversion_ids_are_stable(converter, parser):
    first = [r.resource_id for r in converter.convert(parser.parse(ORU_EXAMPLE))]
    second = [r.resource_id for r in converter.convert(parser.parse(ORU_EXAMPLE))]

    assert first == second


def test_non_numeric_value_becomes_string(converter, parser):
    message = (
        "MSH|^~\\&|LAB|HOSP|HIS|HOSP|20240101||ORU^R01|M9|P|2.5\r"
        "PID|1|MRN1\r"
        "OBR|1|PL1|FL1|2345-7^Glucose^LN\r"
        "OBX|1|ST|2345-7^Glucose^LN||see note||||||P\r"
    )
    (observation,) = converter.convert(parser.parse(message))

    assert observation.data["valueString"] == "see note"
    assert observation.data["status"] == "preliminary"
    assert observation.data["code"]["coding"][0]["system"] == LOINC_SYSTEM
    assert observation.data["identifier"] == [{"value": "FL1-1"}]


def test_adt_converts_to_patient_and_encounter(converter, parser):
    patient, encounter = converter.convert(parser.parse(ADT_EXAMPLE))

    assert patient.resource_id == "P12345"
    assert patient.data["name"][0]["family"] == "Smith"
    assert patient.data["name"][0]["given"] == ["Jane", "Q"]
    assert patient.data["gender"] == "female"
    assert patient.data["birthDate"] == "1985-03-15"
    assert patient.data["address"][0]["city"] == "Springfield"
    assert patient.data["telecom"][0]["value"] == "555-0100"

    assert encounter.resource_type == "Encounter"
    assert encounter.data["status"] == "in-progress"
    assert encounter.data["class"]["code"] == "IMP"
    assert encounter.data["subject"] == {"reference": "Patient/P12345"}
    assert encounter.data["identifier"] == [{"value": "V789"}]
    assert encounter.data["participant"][0]["individual"]["reference"] == "Practitioner/1234"
    assert encounter.data["period"]["start"].startswith("2024-01-01T11:00:00")


def test_orm_converts_to_service_request(converter, parser):
    (request,) = converter.convert(parser.parse(ORM_EXAMPLE))

    data = request.data
    assert data["resourceType"] == "ServiceRequest"
    assert data["status"] == "active"
    assert data["intent"] == "order"
    assert data["priority"] == "stat"
    assert data["code"]["coding"][0]["system"] == LOINC_SYSTEM
    assert data["subject"] == {"reference": "Patient/P12345"}


def test_patient_id_is_derived_when_pid_is_not_a_fhir_id(converter, parser):
    message = ORU_EXAMPLE.replace("PID|1|MRN123|", "PID|1|MRN 123/45|")
    parsed = parser.parse(message)

    patient_id = converter.patient_id_for(parsed)
    assert patient_id.startswith("pat-")
    assert patient_id == converter.patient_id_for(parser.parse(message))


def test_patient_identity_uses_declared_separators(converter, parser):
    message = (
        "MSH|$~\\&|ADM|HOSP|HIS|HOSP|20240101||ADT$A01|A9|P|2.5\r"
        "PID|1||MRN9$$$HOSP$MR~ALT7$$$CLINIC$PI||Doe$John\r"
    )
    parsed = parser.parse(message)

    assert converter.patient_id_for(parsed) == "MRN9"
    (patient,) = converter.convert(parsed)
    assert patient.resource_id == "MRN9"
    assert [identifier["value"] for identifier in patient.data["identifier"]] == ["MRN9", "ALT7"]
    assert patient.data["identifier"][0]["assigner"] == {"display": "HOSP"}
    assert patient.data["name"][0]["family"] == "Doe"


def test_unsupported_message_type_yields_nothing(converter, parser):
    message = "MSH|^~\\&|SCH|HOSP|HIS|HOSP|20240101||SIU^S12|S1|P|2.5\rPID|1|MRN1\r"

    assert converter.convert(parser.parse(message)) == []
