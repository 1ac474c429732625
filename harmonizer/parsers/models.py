# ===============================
# File: harmonizer/parsers/models.py
# ===============================
from dataclasses import dataclass, field
from typing import List, Optional, Union

ObservationValue = Union[int, float, str]


@dataclass
class PatientRecord:
    patient_id: str
    first_name: str
    last_name: str
    birth_date: Optional[str] = None  # YYYY-MM-DD
    gender: str = "unknown"  # male | female | other | unknown
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class ObservationRecord:
    patient_id: str
    observation_type: str
    observation_value: ObservationValue
    observation_unit: str
    observation_date: str  # YYYY-MM-DD


@dataclass
class SkippedSegment:
    reason: str
    segment: str


@dataclass
class ParsedData:
    patients: List[PatientRecord] = field(default_factory=list)
    observations: List[ObservationRecord] = field(default_factory=list)
    skipped: List[SkippedSegment] = field(default_factory=list)
