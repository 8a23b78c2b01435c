"""
Code systems and value maps shared by the HL7 and FHIR mappers.
"""

from typing import Dict, Optional

INTERPRETATION_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ObservationInterpretation"
OBSERVATION_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/observation-category"
ENCOUNTER_CLASS_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ActCode"
IDENTIFIER_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-0203"
LOINC_SYSTEM = "http://loinc.org"
UCUM_SYSTEM = "http://unitsofmeasure.org"
RXNORM_SYSTEM = "http://www.nlm.nih.gov/research/umls/rxnorm"
MRN_SYSTEM = "urn:oid:2.16.840.1.113883.3.72"

# Domain lab flag -> v3 ObservationInterpretation code (also the HL7 OBX.8 code).
FLAG_TO_INTERPRETATION: Dict[str, str] = {
    "NORMAL": "N",
    "HIGH": "H",
    "LOW": "L",
    "CRITICAL_HIGH": "HH",
    "CRITICAL_LOW": "LL",
    "ABNORMAL": "A",
}

INTERPRETATION_DISPLAY: Dict[str, str] = {
    "N": "Normal",
    "H": "High",
    "L": "Low",
    "HH": "Critical high",
    "LL": "Critical low",
    "A": "Abnormal",
    "AA": "Critical abnormal",
    "<": "Off scale low",
    ">": "Off scale high",
}

# Domain gender -> HL7 administrative sex (PID.8)
GENDER_TO_HL7: Dict[str, str] = {
    "MALE": "M",
    "FEMALE": "F",
    "OTHER": "O",
    "UNKNOWN": "U",
}

# HL7 administrative sex -> FHIR gender
HL7_TO_FHIR_GENDER: Dict[str, str] = {
    "M": "male",
    "F": "female",
    "O": "other",
    "A": "other",
    "U": "unknown",
}

# PV1.2 patient class -> v3 ActCode
PATIENT_CLASS_TO_ENCOUNTER_CLASS: Dict[str, str] = {
    "I": "IMP",
    "O": "AMB",
    "E": "EMER",
    "P": "PRENC",
    "R": "AMB",
    "B": "AMB",
}

ENCOUNTER_CLASS_DISPLAY: Dict[str, str] = {
    "IMP": "inpatient encounter",
    "AMB": "ambulatory",
    "EMER": "emergency",
    "PRENC": "pre-admission",
}

# Domain visit type -> v3 ActCode
VISIT_TYPE_TO_ENCOUNTER_CLASS: Dict[str, str] = {
    "OUTPATIENT": "AMB",
    "INPATIENT": "IMP",
    "EMERGENCY": "EMER",
}

# OBX.11 result status -> Observation.status
HL7_RESULT_STATUS: Dict[str, str] = {
    "F": "final",
    "P": "preliminary",
    "C": "corrected",
    "X": "cancelled",
    "D": "entered-in-error",
    "R": "registered",
    "I": "registered",
}

LAB_STATUS: Dict[str, str] = {
    "FINAL": "final",
    "PRELIMINARY": "preliminary",
    "CORRECTED": "corrected",
    "CANCELLED": "cancelled",
    "PENDING": "registered",
}

# ORC.1 order control -> ServiceRequest.status
ORDER_CONTROL_STATUS: Dict[str, str] = {
    "NW": "active",
    "XO": "active",
    "SC": "active",
    "HD": "on-hold",
    "RL": "active",
    "CA": "revoked",
    "DC": "revoked",
    "OC": "revoked",
    "CM": "completed",
}

# OBR.5 priority -> ServiceRequest.priority
ORDER_PRIORITY: Dict[str, str] = {
    "S": "stat",
    "A": "asap",
    "R": "routine",
    "T": "urgent",
}

PRESCRIPTION_STATUS: Dict[str, str] = {
    "ACTIVE": "active",
    "PENDING": "draft",
    "DISPENSED": "active",
    "COMPLETED": "completed",
    "CANCELLED": "cancelled",
    "STOPPED": "stopped",
    "ON_HOLD": "on-hold",
}


def hl7_abnormal_flag(flag: Optional[str]) -> Optional[str]:
    """Domain flag or HL7 code -> HL7 abnormal flag code."""
    if not flag:
        return None
    normalized = flag.strip().upper()
    return FLAG_TO_INTERPRETATION.get(normalized, normalized)


def interpretation_code(flag: Optional[str]) -> Optional[str]:
    """Domain or HL7 flag -> interpretation code; unmapped flags are ``A``."""
    if not flag:
        return None
    normalized = flag.strip().upper()
    if normalized in FLAG_TO_INTERPRETATION:
        return FLAG_TO_INTERPRETATION[normalized]
    if normalized in INTERPRETATION_DISPLAY:
        return normalized
    return "A"


def interpretation_concept(flag: Optional[str]) -> Optional[Dict]:
    code = interpretation_code(flag)
    if code is None:
        return None
    return {
        "coding": [
            {
                "system": INTERPRETATION_SYSTEM,
                "code": code,
                "display": INTERPRETATION_DISPLAY.get(code, code),
            }
        ]
    }


def hl7_sex(gender: Optional[str]) -> Optional[str]:
    if not gender:
        return None
    normalized = gender.strip().upper()
    return GENDER_TO_HL7.get(normalized, normalized[:1])


def fhir_gender(gender: Optional[str]) -> Optional[str]:
    """HL7 sex code or domain gender -> FHIR administrative gender."""
    if not gender:
        return None
    normalized = gender.strip().upper()
    code = GENDER_TO_HL7.get(normalized, normalized)
    return HL7_TO_FHIR_GENDER.get(code, "unknown")
