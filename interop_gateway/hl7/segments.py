"""
HL7 v2.x segment layouts.

Each known segment type is a dataclass whose attributes are bound to an HL7
field position through ``hl7_field``. The same layout drives parsing
(position -> attribute) and generation (attribute -> position), so the two
directions cannot drift apart. Unknown segments are kept as ``RawSegment``.
"""

import dataclasses
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, ClassVar, Dict, List, NamedTuple, Optional, Tuple, Type

Transform = Callable[[str], str]


class Separators(NamedTuple):
    """Delimiters declared in MSH.1 and MSH.2."""

    field: str = "|"
    component: str = "^"
    repetition: str = "~"
    escape: str = "\\"
    subcomponent: str = "&"

    @classmethod
    def from_msh(cls, msh_text: str) -> "Separators":
        field_sep = msh_text[3]
        encoding = msh_text[4:].split(field_sep, 1)[0]
        defaults = cls()
        return cls(
            field=field_sep,
            component=encoding[0] if len(encoding) > 0 else defaults.component,
            repetition=encoding[1] if len(encoding) > 1 else defaults.repetition,
            escape=encoding[2] if len(encoding) > 2 else defaults.escape,
            subcomponent=encoding[3] if len(encoding) > 3 else defaults.subcomponent,
        )

    @property
    def encoding_characters(self) -> str:
        return f"{self.component}{self.repetition}{self.escape}{self.subcomponent}"


DEFAULT_SEPARATORS = Separators()


def _identity(value: str) -> str:
    return value


class Composite:
    """Base for HL7 composite data types split on the component separator."""

    COMPONENTS: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def parse(
        cls,
        value: str,
        separators: Separators = DEFAULT_SEPARATORS,
        unescape: Transform = _identity,
    ):
        if not value:
            return None
        # Only the first repetition is interpreted; the raw field keeps the rest.
        first = value.split(separators.repetition)[0]
        parts = first.split(separators.component)
        values = {
            name: unescape(part)
            for name, part in zip(cls.COMPONENTS, parts)
            if part
        }
        return cls(**values)

    def components(self) -> List[str]:
        values = [getattr(self, name) or "" for name in self.COMPONENTS]
        while values and not values[-1]:
            values.pop()
        return values

    def to_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in self.COMPONENTS if getattr(self, name)}


@dataclass(frozen=True)
class PersonName(Composite):
    """XPN: family^given^middle^suffix^prefix^degree."""

    COMPONENTS: ClassVar[Tuple[str, ...]] = ("family", "given", "middle", "suffix", "prefix", "degree")

    family: Optional[str] = None
    given: Optional[str] = None
    middle: Optional[str] = None
    suffix: Optional[str] = None
    prefix: Optional[str] = None
    degree: Optional[str] = None


@dataclass(frozen=True)
class Address(Composite):
    """XAD: street^other^city^state^zip^country^type."""

    COMPONENTS: ClassVar[Tuple[str, ...]] = (
        "street",
        "other_designation",
        "city",
        "state",
        "postal_code",
        "country",
        "address_type",
    )

    street: Optional[str] = None
    other_designation: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    address_type: Optional[str] = None


@dataclass(frozen=True)
class CodedElement(Composite):
    """CE: identifier^text^coding system^alt identifier^alt text^alt coding system."""

    COMPONENTS: ClassVar[Tuple[str, ...]] = (
        "identifier",
        "text",
        "coding_system",
        "alternate_identifier",
        "alternate_text",
        "alternate_coding_system",
    )

    identifier: Optional[str] = None
    text: Optional[str] = None
    coding_system: Optional[str] = None
    alternate_identifier: Optional[str] = None
    alternate_text: Optional[str] = None
    alternate_coding_system: Optional[str] = None


@dataclass(frozen=True)
class Physician(Composite):
    """XCN: id^family^given^middle^suffix^prefix^degree."""

    COMPONENTS: ClassVar[Tuple[str, ...]] = ("id", "family", "given", "middle", "suffix", "prefix", "degree")

    id: Optional[str] = None
    family: Optional[str] = None
    given: Optional[str] = None
    middle: Optional[str] = None
    suffix: Optional[str] = None
    prefix: Optional[str] = None
    degree: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        parts = [p for p in (self.prefix, self.given, self.middle, self.family, self.suffix) if p]
        return " ".join(parts) or None


def hl7_field(position: int, composite: Optional[Type[Composite]] = None) -> Any:
    """Bind a segment attribute to an HL7 field position."""
    return field(default=None, metadata={"position": position, "composite": composite})


@lru_cache(maxsize=None)
def _layout(cls: type) -> Dict[int, dataclasses.Field]:
    return {
        f.metadata["position"]: f
        for f in dataclasses.fields(cls)
        if "position" in f.metadata
    }


@dataclass
class SegmentRecord:
    """
    A parsed segment.

    ``fields`` holds every raw field string with the segment name at index 0,
    so ``fields[n]`` is field ``n`` in HL7 numbering.
    """

    name: str
    fields: List[str]

    @classmethod
    def layout(cls) -> Dict[int, dataclasses.Field]:
        return _layout(cls)

    @classmethod
    def position_of(cls, attribute: str) -> int:
        for position, f in cls.layout().items():
            if f.name == attribute:
                return position
        raise KeyError(f"{cls.__name__} has no field {attribute!r}")

    @classmethod
    def from_fields(
        cls,
        fields: List[str],
        separators: Separators = DEFAULT_SEPARATORS,
        unescape: Transform = _identity,
    ) -> "SegmentRecord":
        values = {}
        for position, f in cls.layout().items():
            raw = fields[position] if position < len(fields) else ""
            composite = f.metadata["composite"]
            if composite is not None:
                values[f.name] = composite.parse(raw, separators, unescape)
            else:
                values[f.name] = unescape(raw) if raw else None
        return cls(name=fields[0], fields=list(fields), **values)

    @classmethod
    def compose(
        cls,
        values: Dict[str, Any],
        separators: Separators = DEFAULT_SEPARATORS,
        escape: Transform = _identity,
    ) -> List[str]:
        """
        Lay out attribute values into a raw field list, the inverse of ``from_fields``.

        Composite values and lists are joined on the component separator after
        each component is escaped.
        """
        name = cls.SEGMENT_NAME
        placed: Dict[int, str] = {}
        for attribute, value in values.items():
            if value is None or value == "":
                continue
            position = cls.position_of(attribute)
            if isinstance(value, Composite):
                value = value.components()
            if isinstance(value, (list, tuple)):
                placed[position] = separators.component.join(escape(str(part or "")) for part in value)
            else:
                placed[position] = escape(str(value))
        last = max(placed) if placed else 0
        return [name] + [placed.get(position, "") for position in range(1, last + 1)]

    def field(self, position: int) -> str:
        """Raw value at ``position``; empty string when the segment is shorter."""
        return self.fields[position] if position < len(self.fields) else ""

    @property
    def field_count(self) -> int:
        return len(self.fields) - 1

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "fields": list(self.fields)}
        for f in self.layout().values():
            value = getattr(self, f.name)
            if value is None:
                continue
            result[f.name] = value.to_dict() if isinstance(value, Composite) else value
        return result


@dataclass
class RawSegment(SegmentRecord):
    """Segment of a type without a layout; only ``fields`` is populated."""


@dataclass
class PIDSegment(SegmentRecord):
    """Patient identification."""

    SEGMENT_NAME: ClassVar[str] = "PID"

    set_id: Optional[str] = hl7_field(1)
    patient_id: Optional[str] = hl7_field(2)
    patient_identifier_list: Optional[str] = hl7_field(3)
    alternate_patient_id: Optional[str] = hl7_field(4)
    patient_name: Optional[PersonName] = hl7_field(5, PersonName)
    mothers_maiden_name: Optional[PersonName] = hl7_field(6, PersonName)
    date_of_birth: Optional[str] = hl7_field(7)
    administrative_sex: Optional[str] = hl7_field(8)
    patient_alias: Optional[PersonName] = hl7_field(9, PersonName)
    race: Optional[str] = hl7_field(10)
    patient_address: Optional[Address] = hl7_field(11, Address)
    county_code: Optional[str] = hl7_field(12)
    phone_home: Optional[str] = hl7_field(13)
    phone_business: Optional[str] = hl7_field(14)
    primary_language: Optional[str] = hl7_field(15)
    marital_status: Optional[str] = hl7_field(16)
    religion: Optional[str] = hl7_field(17)
    patient_account_number: Optional[str] = hl7_field(18)
    ssn_number: Optional[str] = hl7_field(19)
    drivers_license_number: Optional[str] = hl7_field(20)
    mothers_identifier: Optional[str] = hl7_field(21)
    ethnic_group: Optional[str] = hl7_field(22)
    birth_place: Optional[str] = hl7_field(23)
    multiple_birth_indicator: Optional[str] = hl7_field(24)
    birth_order: Optional[str] = hl7_field(25)
    citizenship: Optional[str] = hl7_field(26)
    veterans_military_status: Optional[str] = hl7_field(27)
    nationality: Optional[str] = hl7_field(28)
    patient_death_datetime: Optional[str] = hl7_field(29)
    patient_death_indicator: Optional[str] = hl7_field(30)

    def identifiers(self, separators: Separators = DEFAULT_SEPARATORS) -> List[List[str]]:
        """PID.3 repetitions, each split into its CX components."""
        if not self.patient_identifier_list:
            return []
        return [
            repetition.split(separators.component)
            for repetition in self.patient_identifier_list.split(separators.repetition)
        ]

    def mrn(self, separators: Separators = DEFAULT_SEPARATORS) -> Optional[str]:
        """PID.2, or the ID component of the first PID.3 identifier."""
        if self.patient_id:
            return self.patient_id
        identifiers = self.identifiers(separators)
        if identifiers:
            return identifiers[0][0] or None
        return None


@dataclass
class PV1Segment(SegmentRecord):
    """Patient visit."""

    SEGMENT_NAME: ClassVar[str] = "PV1"

    set_id: Optional[str] = hl7_field(1)
    patient_class: Optional[str] = hl7_field(2)
    assigned_location: Optional[str] = hl7_field(3)
    admission_type: Optional[str] = hl7_field(4)
    preadmit_number: Optional[str] = hl7_field(5)
    prior_location: Optional[str] = hl7_field(6)
    attending_doctor: Optional[Physician] = hl7_field(7, Physician)
    referring_doctor: Optional[Physician] = hl7_field(8, Physician)
    consulting_doctor: Optional[Physician] = hl7_field(9, Physician)
    hospital_service: Optional[str] = hl7_field(10)
    admit_source: Optional[str] = hl7_field(14)
    admitting_doctor: Optional[Physician] = hl7_field(17, Physician)
    patient_type: Optional[str] = hl7_field(18)
    visit_number: Optional[str] = hl7_field(19)
    financial_class: Optional[str] = hl7_field(20)
    discharge_disposition: Optional[str] = hl7_field(36)
    servicing_facility: Optional[str] = hl7_field(39)
    admit_datetime: Optional[str] = hl7_field(44)
    discharge_datetime: Optional[str] = hl7_field(45)


@dataclass
class OBRSegment(SegmentRecord):
    """Observation request."""

    SEGMENT_NAME: ClassVar[str] = "OBR"

    set_id: Optional[str] = hl7_field(1)
    placer_order_number: Optional[str] = hl7_field(2)
    filler_order_number: Optional[str] = hl7_field(3)
    universal_service_id: Optional[CodedElement] = hl7_field(4, CodedElement)
    priority: Optional[str] = hl7_field(5)
    requested_datetime: Optional[str] = hl7_field(6)
    observation_datetime: Optional[str] = hl7_field(7)
    observation_end_datetime: Optional[str] = hl7_field(8)
    relevant_clinical_info: Optional[str] = hl7_field(13)
    specimen_received_datetime: Optional[str] = hl7_field(14)
    specimen_source: Optional[str] = hl7_field(15)
    ordering_provider: Optional[Physician] = hl7_field(16, Physician)
    results_status_change_datetime: Optional[str] = hl7_field(22)
    diagnostic_service_section: Optional[str] = hl7_field(24)
    result_status: Optional[str] = hl7_field(25)
    reason_for_study: Optional[CodedElement] = hl7_field(31, CodedElement)
    scheduled_datetime: Optional[str] = hl7_field(36)


@dataclass
class OBXSegment(SegmentRecord):
    """Observation result."""

    SEGMENT_NAME: ClassVar[str] = "OBX"

    set_id: Optional[str] = hl7_field(1)
    value_type: Optional[str] = hl7_field(2)
    observation_identifier: Optional[CodedElement] = hl7_field(3, CodedElement)
    observation_sub_id: Optional[str] = hl7_field(4)
    observation_value: Optional[str] = hl7_field(5)
    units: Optional[CodedElement] = hl7_field(6, CodedElement)
    references_range: Optional[str] = hl7_field(7)
    abnormal_flags: Optional[str] = hl7_field(8)
    probability: Optional[str] = hl7_field(9)
    nature_of_abnormal_test: Optional[str] = hl7_field(10)
    observation_result_status: Optional[str] = hl7_field(11)
    effective_date_of_reference_range: Optional[str] = hl7_field(12)
    user_defined_access_checks: Optional[str] = hl7_field(13)
    observation_datetime: Optional[str] = hl7_field(14)
    producer_id: Optional[CodedElement] = hl7_field(15, CodedElement)
    responsible_observer: Optional[Physician] = hl7_field(16, Physician)
    observation_method: Optional[CodedElement] = hl7_field(17, CodedElement)


@dataclass
class ORCSegment(SegmentRecord):
    """Common order."""

    SEGMENT_NAME: ClassVar[str] = "ORC"

    order_control: Optional[str] = hl7_field(1)
    placer_order_number: Optional[str] = hl7_field(2)
    filler_order_number: Optional[str] = hl7_field(3)
    placer_group_number: Optional[str] = hl7_field(4)
    order_status: Optional[str] = hl7_field(5)
    response_flag: Optional[str] = hl7_field(6)
    quantity_timing: Optional[str] = hl7_field(7)
    parent_order: Optional[str] = hl7_field(8)
    transaction_datetime: Optional[str] = hl7_field(9)
    entered_by: Optional[Physician] = hl7_field(10, Physician)
    verified_by: Optional[Physician] = hl7_field(11, Physician)
    ordering_provider: Optional[Physician] = hl7_field(12, Physician)
    enterers_location: Optional[str] = hl7_field(13)
    call_back_phone_number: Optional[str] = hl7_field(14)
    order_effective_datetime: Optional[str] = hl7_field(15)
    order_control_code_reason: Optional[str] = hl7_field(16)
    entering_organization: Optional[CodedElement] = hl7_field(17, CodedElement)
    entering_device: Optional[str] = hl7_field(18)
    action_by: Optional[Physician] = hl7_field(19, Physician)


SEGMENT_TYPES: Dict[str, Type[SegmentRecord]] = {
    cls.SEGMENT_NAME: cls
    for cls in (PIDSegment, PV1Segment, OBRSegment, OBXSegment, ORCSegment)
}


def segment_class_for(name: str) -> Type[SegmentRecord]:
    return SEGMENT_TYPES.get(name, RawSegment)
