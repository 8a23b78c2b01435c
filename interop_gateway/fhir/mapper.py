"""
Domain record to FHIR R4 resource mapper.

One conversion per internal entity; all conversions are pure.
"""

import logging
from typing import Any, Dict, List, Optional

from interop_gateway.fhir.dates import to_fhir_date, to_fhir_datetime
from interop_gateway.fhir.resources import MappedResource, numeric_value, reference
from interop_gateway.fhir.terminology import (
    ENCOUNTER_CLASS_DISPLAY,
    ENCOUNTER_CLASS_SYSTEM,
    IDENTIFIER_TYPE_SYSTEM,
    LAB_STATUS,
    LOINC_SYSTEM,
    MRN_SYSTEM,
    OBSERVATION_CATEGORY_SYSTEM,
    PRESCRIPTION_STATUS,
    RXNORM_SYSTEM,
    UCUM_SYSTEM,
    VISIT_TYPE_TO_ENCOUNTER_CLASS,
    fhir_gender,
    interpretation_concept,
)
from interop_gateway.fhir.validation import missing_required_elements
from interop_gateway.models.domain import (
    LabResult,
    MedicalRecord,
    PatientRecord,
    Prescription,
    ProviderRecord,
)

logger = logging.getLogger(__name__)

SERVICE_PROVIDER = "Organization/hms"


def _compact(resource: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in resource.items() if value not in (None, [], {})}


def _practitioner(provider: Optional[ProviderRecord]) -> Optional[Dict[str, str]]:
    if provider is None:
        return None
    ref = {"reference": f"Practitioner/{provider.id}"}
    display = " ".join(p for p in (provider.prefix, provider.given_name, provider.family_name) if p)
    if display:
        ref["display"] = display
    return ref


def _mapped(resource: Dict[str, Any], patient_id: Optional[str]) -> MappedResource:
    issues = missing_required_elements(resource)
    if issues:
        logger.warning("Mapped %s/%s is incomplete: %s", resource["resourceType"], resource.get("id"), issues)
    return MappedResource(
        resource_type=resource["resourceType"],
        resource_id=resource["id"],
        data=resource,
        patient_id=patient_id,
        issues=issues,
    )


class DomainToFHIRMapper:
    """Converts internal domain records to FHIR resources."""

    def patient_to_fhir(self, patient: PatientRecord) -> MappedResource:
        telecom: List[Dict[str, str]] = []
        if patient.phone:
            telecom.append({"system": "phone", "value": patient.phone, "use": "home"})
        if patient.email:
            telecom.append({"system": "email", "value": patient.email})

        address = []
        if patient.address is not None:
            address.append(
                _compact(
                    {
                        "line": [patient.address.line] if patient.address.line else None,
                        "city": patient.address.city,
                        "state": patient.address.state,
                        "postalCode": patient.address.postal_code,
                        "country": patient.address.country,
                    }
                )
            )

        resource = _compact(
            {
                "resourceType": "Patient",
                "id": patient.id,
                "identifier": [
                    {
                        "use": "usual",
                        "type": {"coding": [{"system": IDENTIFIER_TYPE_SYSTEM, "code": "MR"}]},
                        "system": MRN_SYSTEM,
                        "value": patient.identifier,
                    }
                ],
                "active": patient.is_active,
                "name": [
                    {
                        "use": "official",
                        "family": patient.last_name,
                        "given": [g for g in (patient.first_name, patient.middle_name) if g],
                    }
                ],
                "gender": fhir_gender(patient.gender),
                "birthDate": to_fhir_date(patient.date_of_birth),
                "telecom": telecom,
                "address": address,
            }
        )
        return _mapped(resource, patient.id)

    def medical_record_to_encounter(self, record: MedicalRecord) -> MappedResource:
        class_code = VISIT_TYPE_TO_ENCOUNTER_CLASS.get((record.visit_type or "").upper(), "AMB")
        participant = []
        practitioner = _practitioner(record.doctor)
        if practitioner:
            participant.append({"individual": practitioner})

        resource = _compact(
            {
                "resourceType": "Encounter",
                "id": record.id,
                "status": "finished",
                "class": {
                    "system": ENCOUNTER_CLASS_SYSTEM,
                    "code": class_code,
                    "display": ENCOUNTER_CLASS_DISPLAY.get(class_code, class_code),
                },
                "subject": reference("Patient", record.patient_id),
                "participant": participant,
                "period": {"start": to_fhir_datetime(record.visit_date)},
                "reasonCode": [{"text": diagnosis} for diagnosis in record.diagnosis if diagnosis],
                "serviceProvider": {"reference": SERVICE_PROVIDER},
            }
        )
        return _mapped(resource, record.patient_id)

    def lab_result_to_observation(self, result: LabResult) -> MappedResource:
        coding = {"display": result.parameter}
        if result.test_code:
            coding.update({"system": LOINC_SYSTEM, "code": result.test_code})

        resource: Dict[str, Any] = {
            "resourceType": "Observation",
            "id": result.id,
            "status": LAB_STATUS.get(result.status.upper(), "unknown"),
            "category": [
                {
                    "coding": [
                        {
                            "system": OBSERVATION_CATEGORY_SYSTEM,
                            "code": "laboratory",
                            "display": "Laboratory",
                        }
                    ]
                }
            ],
            "code": {"coding": [coding], "text": result.parameter},
            "subject": reference("Patient", result.patient_id),
            "effectiveDateTime": to_fhir_datetime(result.performed_at),
        }

        number = numeric_value(result.value)
        if number is not None:
            quantity: Dict[str, Any] = {"value": number}
            if result.units:
                quantity.update({"unit": result.units, "system": UCUM_SYSTEM, "code": result.units})
            resource["valueQuantity"] = quantity
        else:
            resource["valueString"] = result.value

        if result.reference_range:
            resource["referenceRange"] = [{"text": result.reference_range}]

        interpretation = interpretation_concept(result.flag)
        if interpretation:
            resource["interpretation"] = [interpretation]

        return _mapped(_compact(resource), result.patient_id)

    def prescription_to_medication_request(self, prescription: Prescription) -> MappedResource:
        medication: Dict[str, Any] = {"text": prescription.medication_name}
        if prescription.medication_code:
            medication["coding"] = [
                {
                    "system": RXNORM_SYSTEM,
                    "code": prescription.medication_code,
                    "display": prescription.medication_name,
                }
            ]

        dosage_text = " ".join(p for p in (prescription.dosage, prescription.frequency) if p)
        dosage: Dict[str, Any] = {"text": dosage_text}
        if prescription.route:
            dosage["route"] = {"text": prescription.route}

        dispense: Dict[str, Any] = {}
        if prescription.quantity is not None:
            dispense["quantity"] = {"value": prescription.quantity}
        if prescription.duration_days is not None:
            dispense["expectedSupplyDuration"] = {
                "value": prescription.duration_days,
                "unit": "days",
                "system": UCUM_SYSTEM,
                "code": "d",
            }

        resource = _compact(
            {
                "resourceType": "MedicationRequest",
                "id": prescription.id,
                "status": PRESCRIPTION_STATUS.get(prescription.status.upper(), "unknown"),
                "intent": "order",
                "medicationCodeableConcept": medication,
                "subject": reference("Patient", prescription.patient_id),
                "requester": _practitioner(prescription.doctor),
                "authoredOn": to_fhir_datetime(prescription.prescribed_at),
                "dosageInstruction": [dosage],
                "dispenseRequest": dispense,
            }
        )
        return _mapped(resource, prescription.patient_id)
