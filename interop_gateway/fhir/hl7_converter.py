"""
HL7 v2.x to FHIR resource converter.

Converts parsed HL7 v2.x messages to FHIR R4 resources with deterministic ids,
so converting the same message twice yields the same resources.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from interop_gateway.fhir.dates import hl7_to_fhir_date, hl7_to_fhir_datetime
from interop_gateway.fhir.resources import (
    MappedResource,
    derive_resource_id,
    is_valid_fhir_id,
    numeric_value,
    reference,
)
from interop_gateway.fhir.terminology import (
    ENCOUNTER_CLASS_DISPLAY,
    ENCOUNTER_CLASS_SYSTEM,
    HL7_RESULT_STATUS,
    IDENTIFIER_TYPE_SYSTEM,
    LOINC_SYSTEM,
    OBSERVATION_CATEGORY_SYSTEM,
    ORDER_CONTROL_STATUS,
    ORDER_PRIORITY,
    PATIENT_CLASS_TO_ENCOUNTER_CLASS,
    UCUM_SYSTEM,
    fhir_gender,
    interpretation_concept,
)
from interop_gateway.fhir.validation import missing_required_elements
from interop_gateway.hl7.message_parser import ParsedMessage
from interop_gateway.hl7.message_router import HL7MessageRouter
from interop_gateway.hl7.segments import (
    CodedElement,
    OBRSegment,
    OBXSegment,
    ORCSegment,
    Physician,
    PIDSegment,
    PV1Segment,
    Separators,
)

logger = logging.getLogger(__name__)

_LOINC_CODE = re.compile(r"^\d{1,7}-\d$")
_RANGE = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)\s*-\s*([-+]?\d+(?:\.\d+)?)\s*$")

# ADT trigger event -> Encounter.status
ENCOUNTER_STATUS_BY_TRIGGER = {
    "A01": "in-progress",
    "A02": "in-progress",
    "A04": "in-progress",
    "A06": "in-progress",
    "A07": "in-progress",
    "A08": "in-progress",
    "A13": "in-progress",
    "A03": "finished",
    "A05": "planned",
    "A14": "planned",
    "A11": "cancelled",
    "A27": "cancelled",
}


def _compact(resource: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in resource.items() if value not in (None, [], {})}


def _codeable_concept(element: Optional[CodedElement]) -> Optional[Dict[str, Any]]:
    if element is None:
        return None
    coding = _compact(
        {
            "system": _code_system(element),
            "code": element.identifier,
            "display": element.text,
        }
    )
    concept: Dict[str, Any] = {}
    if coding.get("code"):
        concept["coding"] = [coding]
    text = element.text or element.identifier
    if text:
        concept["text"] = text
    return concept or None


def _code_system(element: CodedElement) -> Optional[str]:
    system = (element.coding_system or "").upper()
    if system in ("LN", "LOINC"):
        return LOINC_SYSTEM
    if system:
        return element.coding_system
    if element.identifier and _LOINC_CODE.match(element.identifier):
        return LOINC_SYSTEM
    return None


def _practitioner(physician: Optional[Physician]) -> Optional[Dict[str, Any]]:
    if physician is None:
        return None
    ref: Dict[str, Any] = {}
    if physician.id and is_valid_fhir_id(physician.id):
        ref["reference"] = f"Practitioner/{physician.id}"
    elif physician.id:
        ref["identifier"] = {"value": physician.id}
    if physician.display_name:
        ref["display"] = physician.display_name
    return ref or None


def _mapped(resource: Dict[str, Any], patient_id: Optional[str]) -> MappedResource:
    issues = missing_required_elements(resource)
    if issues:
        logger.warning("Converted %s/%s is incomplete: %s", resource["resourceType"], resource["id"], issues)
    return MappedResource(
        resource_type=resource["resourceType"],
        resource_id=resource["id"],
        data=resource,
        patient_id=patient_id,
        issues=issues,
    )


class HL7ToFHIRConverter:
    """Converter from HL7 v2.x messages to FHIR R4 resources."""

    def __init__(self):
        self.router = HL7MessageRouter()
        self.router.register_handler("ADT^*", self._convert_adt)
        self.router.register_handler("ORU^*", self._convert_oru)
        self.router.register_handler("ORM^*", self._convert_orm)

    def supported_types(self) -> List[str]:
        return self.router.get_supported_types()

    def convert(self, message: ParsedMessage) -> List[MappedResource]:
        """
        Convert a parsed message to FHIR resources.

        ADT yields Patient and Encounter, ORU one Observation per OBX and ORM
        one ServiceRequest per OBR. Other message types yield nothing.
        """
        resources = self.router.route(message)
        if resources is None:
            return []
        logger.info(
            "Converted HL7 %s message %s to %d FHIR resources",
            message.event_type,
            message.message_id,
            len(resources),
        )
        return resources

    def patient_id_for(self, message: ParsedMessage) -> str:
        """
        FHIR id of the message's patient.

        The PID identifier when it is a valid FHIR id, otherwise an id derived
        from it or, lacking one, from the message control ID.
        """
        pid = message.segment("PID")
        mrn = pid.mrn(message.separators) if isinstance(pid, PIDSegment) else None
        if is_valid_fhir_id(mrn):
            return mrn
        if mrn:
            return derive_resource_id("pat", mrn)
        return derive_resource_id("pat", message.sending_application, message.message_id)

    def _convert_adt(self, message: ParsedMessage) -> List[MappedResource]:
        pid = message.segment("PID")
        if not isinstance(pid, PIDSegment):
            logger.warning("ADT message %s has no PID segment, nothing to convert", message.message_id)
            return []

        patient_id = self.patient_id_for(message)
        resources = [self._convert_patient(pid, patient_id, message.separators)]
        pv1 = message.segment("PV1")
        if isinstance(pv1, PV1Segment):
            resources.append(self._convert_encounter(message, pv1, patient_id))
        return resources

    def _convert_patient(self, pid: PIDSegment, patient_id: str, separators: Separators) -> MappedResource:
        identifiers = []
        if pid.patient_id:
            identifiers.append({"use": "usual", "value": pid.patient_id})
        for parts in pid.identifiers(separators):
            if not parts[0] or parts[0] == pid.patient_id:
                continue
            identifier: Dict[str, Any] = {"value": parts[0]}
            if len(parts) > 3 and parts[3]:
                identifier["assigner"] = {"display": parts[3]}
            if len(parts) > 4 and parts[4]:
                identifier["type"] = {"coding": [{"system": IDENTIFIER_TYPE_SYSTEM, "code": parts[4]}]}
            identifiers.append(identifier)

        name = None
        if pid.patient_name is not None:
            name = _compact(
                {
                    "use": "official",
                    "family": pid.patient_name.family,
                    "given": [g for g in (pid.patient_name.given, pid.patient_name.middle) if g],
                    "prefix": [pid.patient_name.prefix] if pid.patient_name.prefix else None,
                    "suffix": [pid.patient_name.suffix] if pid.patient_name.suffix else None,
                }
            )

        address = None
        if pid.patient_address is not None:
            address = _compact(
                {
                    "line": [pid.patient_address.street] if pid.patient_address.street else None,
                    "city": pid.patient_address.city,
                    "state": pid.patient_address.state,
                    "postalCode": pid.patient_address.postal_code,
                    "country": pid.patient_address.country,
                }
            )

        telecom = []
        if pid.phone_home:
            telecom.append({"system": "phone", "value": pid.phone_home, "use": "home"})
        if pid.phone_business:
            telecom.append({"system": "phone", "value": pid.phone_business, "use": "work"})

        resource = _compact(
            {
                "resourceType": "Patient",
                "id": patient_id,
                "identifier": identifiers,
                "name": [name] if name else None,
                "gender": fhir_gender(pid.administrative_sex),
                "birthDate": hl7_to_fhir_date(pid.date_of_birth),
                "address": [address] if address else None,
                "telecom": telecom,
                "deceasedDateTime": hl7_to_fhir_datetime(pid.patient_death_datetime),
            }
        )
        if "deceasedDateTime" not in resource and pid.patient_death_indicator == "Y":
            resource["deceasedBoolean"] = True
        return _mapped(resource, patient_id)

    def _convert_encounter(self, message: ParsedMessage, pv1: PV1Segment, patient_id: str) -> MappedResource:
        class_code = PATIENT_CLASS_TO_ENCOUNTER_CLASS.get((pv1.patient_class or "").upper(), "AMB")
        visit_key = pv1.visit_number or pv1.admit_datetime or message.message_id

        participant = []
        for doctor, role in ((pv1.attending_doctor, "ATND"), (pv1.admitting_doctor, "ADM")):
            individual = _practitioner(doctor)
            if individual:
                participant.append({"type": [{"coding": [{"code": role}]}], "individual": individual})

        location = None
        if pv1.assigned_location:
            location_name = pv1.assigned_location.split(message.separators.component)[0]
            location = [{"location": {"display": location_name}}]

        resource = _compact(
            {
                "resourceType": "Encounter",
                "id": derive_resource_id("enc", patient_id, visit_key),
                "identifier": [{"value": pv1.visit_number}] if pv1.visit_number else None,
                "status": ENCOUNTER_STATUS_BY_TRIGGER.get(message.trigger_event or "", "unknown"),
                "class": {
                    "system": ENCOUNTER_CLASS_SYSTEM,
                    "code": class_code,
                    "display": ENCOUNTER_CLASS_DISPLAY.get(class_code, class_code),
                },
                "subject": reference("Patient", patient_id),
                "participant": participant,
                "period": _compact(
                    {
                        "start": hl7_to_fhir_datetime(pv1.admit_datetime),
                        "end": hl7_to_fhir_datetime(pv1.discharge_datetime),
                    }
                ),
                "location": location,
            }
        )
        return _mapped(resource, patient_id)

    def _convert_oru(self, message: ParsedMessage) -> List[MappedResource]:
        patient_id = self.patient_id_for(message)
        resources = []
        current_obr: Optional[OBRSegment] = None
        for segment in message.ordered_segments:
            if isinstance(segment, OBRSegment):
                current_obr = segment
            elif isinstance(segment, OBXSegment):
                resources.append(self._convert_observation(message, segment, current_obr, patient_id))
        return resources

    def _convert_observation(
        self,
        message: ParsedMessage,
        obx: OBXSegment,
        obr: Optional[OBRSegment],
        patient_id: str,
    ) -> MappedResource:
        order_key = None
        if obr is not None:
            order_key = obr.filler_order_number or obr.placer_order_number
        code = obx.observation_identifier.identifier if obx.observation_identifier else None
        resource_id = derive_resource_id(
            "obs",
            patient_id,
            order_key or message.message_id,
            obx.set_id,
            code,
            obx.observation_sub_id,
        )

        resource: Dict[str, Any] = {
            "resourceType": "Observation",
            "id": resource_id,
            "status": HL7_RESULT_STATUS.get((obx.observation_result_status or "F").upper(), "final"),
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
            "code": _codeable_concept(obx.observation_identifier),
            "subject": reference("Patient", patient_id),
        }
        if order_key:
            resource["identifier"] = [{"value": f"{order_key}-{obx.set_id or '1'}"}]

        unit = obx.units.identifier if obx.units else None
        number = numeric_value(obx.observation_value) if obx.value_type in (None, "NM", "SN") else None
        if number is not None:
            quantity: Dict[str, Any] = {"value": number}
            if unit:
                quantity.update({"unit": unit, "system": UCUM_SYSTEM, "code": unit})
            resource["valueQuantity"] = quantity
        elif obx.observation_value:
            resource["valueString"] = obx.observation_value

        if obx.references_range:
            resource["referenceRange"] = [self._reference_range(obx.references_range, unit)]

        interpretation = interpretation_concept(obx.abnormal_flags)
        if interpretation:
            resource["interpretation"] = [interpretation]

        effective = hl7_to_fhir_datetime(obx.observation_datetime)
        if effective is None and obr is not None:
            effective = hl7_to_fhir_datetime(obr.observation_datetime)
        if effective:
            resource["effectiveDateTime"] = effective

        performer = _practitioner(obx.responsible_observer)
        if performer:
            resource["performer"] = [performer]

        return _mapped(_compact(resource), patient_id)

    @staticmethod
    def _reference_range(text: str, unit: Optional[str]) -> Dict[str, Any]:
        reference_range: Dict[str, Any] = {"text": text}
        match = _RANGE.match(text)
        if match:
            for key, value in zip(("low", "high"), match.groups()):
                bound: Dict[str, Any] = {"value": numeric_value(value)}
                if unit:
                    bound.update({"unit": unit, "system": UCUM_SYSTEM, "code": unit})
                reference_range[key] = bound
        return reference_range

    def _convert_orm(self, message: ParsedMessage) -> List[MappedResource]:
        patient_id = self.patient_id_for(message)
        resources = []
        current_orc: Optional[ORCSegment] = None
        for segment in message.ordered_segments:
            if isinstance(segment, ORCSegment):
                current_orc = segment
            elif isinstance(segment, OBRSegment):
                resources.append(self._convert_service_request(message, current_orc, segment, patient_id))
        return resources

    def _convert_service_request(
        self,
        message: ParsedMessage,
        orc: Optional[ORCSegment],
        obr: OBRSegment,
        patient_id: str,
    ) -> MappedResource:
        placer = obr.placer_order_number or (orc.placer_order_number if orc else None)
        filler = obr.filler_order_number or (orc.filler_order_number if orc else None)
        order_key = placer or filler or f"{message.message_id}-{obr.set_id or '1'}"

        identifiers = []
        if placer:
            identifiers.append({"type": {"coding": [{"system": IDENTIFIER_TYPE_SYSTEM, "code": "PLAC"}]}, "value": placer})
        if filler:
            identifiers.append({"type": {"coding": [{"system": IDENTIFIER_TYPE_SYSTEM, "code": "FILL"}]}, "value": filler})

        order_control = (orc.order_control or "NW").upper() if orc else "NW"
        requester = _practitioner((orc.ordering_provider if orc else None) or obr.ordering_provider)

        resource = _compact(
            {
                "resourceType": "ServiceRequest",
                "id": derive_resource_id("sr", patient_id, order_key),
                "identifier": identifiers,
                "status": ORDER_CONTROL_STATUS.get(order_control, "active"),
                "intent": "order",
                "priority": ORDER_PRIORITY.get((obr.priority or "").upper()),
                "code": _codeable_concept(obr.universal_service_id),
                "subject": reference("Patient", patient_id),
                "requester": requester,
                "occurrenceDateTime": hl7_to_fhir_datetime(
                    obr.requested_datetime or (orc.order_effective_datetime if orc else None)
                ),
                "authoredOn": hl7_to_fhir_datetime(orc.transaction_datetime if orc else None),
                "reasonCode": [_codeable_concept(obr.reason_for_study)] if obr.reason_for_study else None,
                "note": [{"text": obr.relevant_clinical_info}] if obr.relevant_clinical_info else None,
            }
        )
        return _mapped(resource, patient_id)
