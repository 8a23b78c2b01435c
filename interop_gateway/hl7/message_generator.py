"""
HL7 v2.x message generator.

Builds pipe-delimited messages from domain records. Segment builders lay out
fields through the same tables the parser reads.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

import hl7
from pydantic import BaseModel

from interop_gateway.exceptions import UnsupportedMessageTypeError
from interop_gateway.fhir.terminology import hl7_abnormal_flag, hl7_sex
from interop_gateway.hl7.segments import (
    DEFAULT_SEPARATORS,
    Address,
    CodedElement,
    OBRSegment,
    OBXSegment,
    ORCSegment,
    PersonName,
    PIDSegment,
    PV1Segment,
    Physician,
    SegmentRecord,
    Separators,
)
from interop_gateway.models.domain import PatientRecord, ProviderRecord
from interop_gateway.models.hl7_payloads import ADTPayload, ORMPayload, ORUPayload

logger = logging.getLogger(__name__)

Escape = Callable[[str], str]

_NON_ASCII_RUNS = re.compile(r"([^\x00-\x7f]+)")


def format_hl7_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%Y%m%d%H%M%S")


def format_hl7_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%Y%m%d")


def header_escaper(header: hl7.Message) -> Escape:
    """
    Value escaper for the separators declared in ``header``.

    Delimiters and control characters use python-hl7's escape sequences.
    Characters above U+007F are written as-is; the wire value is text.
    """

    def escape(value: str) -> str:
        return "".join(
            chunk if _NON_ASCII_RUNS.fullmatch(chunk) else header.escape(chunk)
            for chunk in _NON_ASCII_RUNS.split(value)
            if chunk
        )

    return escape


def _default_message_id() -> str:
    # MSH.10 is limited to 20 characters
    return f"MSG{uuid.uuid4().hex[:17].upper()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _physician(provider: Optional[ProviderRecord]) -> Optional[Physician]:
    if provider is None:
        return None
    return Physician(
        id=provider.id,
        family=provider.family_name,
        given=provider.given_name,
        prefix=provider.prefix,
    )


def _is_numeric(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


@dataclass
class GeneratedMessage:
    message_id: str
    message_type: str
    trigger_event: str
    version: str
    timestamp: str
    raw: str


class HL7MessageGenerator:
    """Generator for ADT, ORU and ORM messages."""

    def __init__(
        self,
        sending_application: str = "HMS",
        sending_facility: str = "HOSPITAL",
        receiving_application: str = "RECEIVER",
        receiving_facility: str = "RECEIVER",
        version: str = "2.5",
        processing_id: str = "P",
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _default_message_id,
        separators: Separators = DEFAULT_SEPARATORS,
    ):
        self.sending_application = sending_application
        self.sending_facility = sending_facility
        self.receiving_application = receiving_application
        self.receiving_facility = receiving_facility
        self.version = version
        self.processing_id = processing_id
        self.separators = separators
        self._clock = clock
        self._id_factory = id_factory
        self._builders: Dict[str, Tuple[Type[BaseModel], Callable]] = {
            "ADT": (ADTPayload, self._build_adt),
            "ORU": (ORUPayload, self._build_oru),
            "ORM": (ORMPayload, self._build_orm),
        }

    @property
    def supported_types(self) -> List[str]:
        return sorted(self._builders)

    def generate(
        self,
        message_type: str,
        patient: Union[PatientRecord, Dict[str, Any]],
        payload: Union[BaseModel, Dict[str, Any], None] = None,
    ) -> GeneratedMessage:
        """
        Generate an HL7 message.

        Args:
            message_type: ``ADT``, ``ORU`` or ``ORM`` (a ``^trigger`` suffix is ignored)
            patient: Patient record or a dict validating into one
            payload: Type-specific payload model or dict

        Returns:
            GeneratedMessage with the control ID and the raw wire text

        Raises:
            UnsupportedMessageTypeError: For any other message type
        """
        key = (message_type or "").split("^")[0].upper()
        if key not in self._builders:
            raise UnsupportedMessageTypeError(message_type)

        payload_model, builder = self._builders[key]
        if not isinstance(patient, PatientRecord):
            patient = PatientRecord.model_validate(patient)
        if not isinstance(payload, payload_model):
            payload = payload_model.model_validate(payload or {})

        timestamp = format_hl7_datetime(self._clock())
        message_id = self._id_factory()
        trigger = payload.trigger_event
        msh = self.separators.field.join(
            [
                "MSH",
                self.separators.encoding_characters,
                self.sending_application,
                self.sending_facility,
                self.receiving_application,
                self.receiving_facility,
                timestamp,
                "",
                f"{key}{self.separators.component}{trigger}",
                message_id,
                self.processing_id,
                self.version,
            ]
        )
        escape = header_escaper(hl7.parse(msh))
        segments = [msh] + [
            self.separators.field.join(fields)
            for fields in builder(patient, payload, escape)
        ]
        raw = "\r".join(segments) + "\r"

        logger.info("Generated HL7 %s^%s message %s", key, trigger, message_id)
        return GeneratedMessage(
            message_id=message_id,
            message_type=key,
            trigger_event=trigger,
            version=self.version,
            timestamp=timestamp,
            raw=raw,
        )

    def _compose(self, segment_cls: Type[SegmentRecord], values: Dict[str, Any], escape: Escape) -> List[str]:
        return segment_cls.compose(values, self.separators, escape)

    def _pid(self, patient: PatientRecord, escape: Escape) -> List[str]:
        address = None
        if patient.address is not None:
            address = Address(
                street=patient.address.line,
                city=patient.address.city,
                state=patient.address.state,
                postal_code=patient.address.postal_code,
                country=patient.address.country,
            )
        return self._compose(
            PIDSegment,
            {
                "set_id": "1",
                "patient_id": patient.identifier,
                "patient_identifier_list": [patient.identifier, "", "", self.sending_facility, "MR"],
                "patient_name": PersonName(
                    family=patient.last_name,
                    given=patient.first_name,
                    middle=patient.middle_name,
                ),
                "date_of_birth": format_hl7_date(patient.date_of_birth),
                "administrative_sex": hl7_sex(patient.gender),
                "patient_address": address,
                "phone_home": patient.phone,
            },
            escape,
        )

    def _build_adt(self, patient: PatientRecord, payload: ADTPayload, escape: Escape) -> List[List[str]]:
        pv1 = self._compose(
            PV1Segment,
            {
                "set_id": "1",
                "patient_class": payload.patient_class,
                "assigned_location": payload.assigned_location,
                "admission_type": payload.admission_type,
                "attending_doctor": _physician(payload.attending_doctor),
                "visit_number": payload.visit_number,
                "admit_datetime": format_hl7_datetime(payload.admit_datetime),
                "discharge_datetime": format_hl7_datetime(payload.discharge_datetime),
            },
            escape,
        )
        return [self._pid(patient, escape), pv1]

    def _build_oru(self, patient: PatientRecord, payload: ORUPayload, escape: Escape) -> List[List[str]]:
        segments = [self._pid(patient, escape)]
        segments.append(
            self._compose(
                OBRSegment,
                {
                    "set_id": "1",
                    "placer_order_number": payload.placer_order_number,
                    "filler_order_number": payload.filler_order_number,
                    "universal_service_id": CodedElement(
                        identifier=payload.test_code,
                        text=payload.test_name,
                        coding_system=payload.coding_system,
                    ),
                    "observation_datetime": format_hl7_datetime(payload.observation_datetime),
                    "result_status": payload.result_status,
                },
                escape,
            )
        )
        for index, result in enumerate(payload.results, start=1):
            value_type = result.value_type or ("NM" if _is_numeric(result.value) else "ST")
            segments.append(
                self._compose(
                    OBXSegment,
                    {
                        "set_id": str(index),
                        "value_type": value_type,
                        "observation_identifier": CodedElement(
                            identifier=result.code,
                            text=result.name,
                            coding_system=result.coding_system,
                        ),
                        "observation_value": result.value,
                        "units": CodedElement(identifier=result.units) if result.units else None,
                        "references_range": result.reference_range,
                        "abnormal_flags": hl7_abnormal_flag(result.flag),
                        "observation_result_status": result.status,
                        "observation_datetime": format_hl7_datetime(result.observed_at),
                    },
                    escape,
                )
            )
        return segments

    def _build_orm(self, patient: PatientRecord, payload: ORMPayload, escape: Escape) -> List[List[str]]:
        provider = _physician(payload.ordering_provider)
        orc = self._compose(
            ORCSegment,
            {
                "order_control": payload.order_control,
                "placer_order_number": payload.placer_order_number,
                "filler_order_number": payload.filler_order_number,
                "order_status": payload.order_status,
                "transaction_datetime": format_hl7_datetime(self._clock()),
                "ordering_provider": provider,
            },
            escape,
        )
        obr = self._compose(
            OBRSegment,
            {
                "set_id": "1",
                "placer_order_number": payload.placer_order_number,
                "filler_order_number": payload.filler_order_number,
                "universal_service_id": CodedElement(
                    identifier=payload.test_code,
                    text=payload.test_name,
                    coding_system=payload.coding_system,
                ),
                "priority": payload.priority,
                "requested_datetime": format_hl7_datetime(payload.requested_datetime),
                "relevant_clinical_info": payload.clinical_info,
                "ordering_provider": provider,
            },
            escape,
        )
        return [self._pid(patient, escape), orc, obr]
