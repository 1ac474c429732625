from types import MappingProxyType
from typing import NamedTuple, Optional

LOINC_SYSTEM = "http://loinc.org"


class TerminologyEntry(NamedTuple):
    code: str
    type_tag: str
    display: str


# LOINC code -> (type tag, display). Loaded once, read-only.
TERMINOLOGY = MappingProxyType(
    {
        "8480-6": TerminologyEntry("8480-6", "blood_pressure_systolic", "Systolic blood pressure"),
        "8462-4": TerminologyEntry("8462-4", "blood_pressure_diastolic", "Diastolic blood pressure"),
        "8867-4": TerminologyEntry("8867-4", "heart_rate", "Heart rate"),
        "8310-5": TerminologyEntry("8310-5", "body_temperature", "Body temperature"),
        "2339-0": TerminologyEntry("2339-0", "blood_glucose", "Glucose [Mass/volume] in Blood"),
        "29463-7": TerminologyEntry("29463-7", "body_weight", "Body weight"),
        "2708-6": TerminologyEntry("2708-6", "oxygen_saturation", "Oxygen saturation in Arterial blood"),
    }
)

BY_TYPE_TAG = MappingProxyType({e.type_tag: e for e in TERMINOLOGY.values()})


def lookup_code(code: str) -> Optional[TerminologyEntry]:
    return TERMINOLOGY.get(code)


def lookup_type_tag(type_tag: str) -> Optional[TerminologyEntry]:
    return BY_TYPE_TAG.get(type_tag)
