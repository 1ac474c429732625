import re
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from harmonizer.commons.logger import logger
from harmonizer.commons.terminology import lookup_code

from .base import _component, _field, _split_fields, coerce_value, hl7_date, normalize_gender
from .models import ObservationRecord, ParsedData, PatientRecord, SkippedSegment

Segment = Tuple[str, List[str]]


def split_segments(hl7_text: str) -> List[str]:
    """Divide en segmentos HL7 (CR/LF/CRLF), omite vacíos."""
    return [s.strip() for s in re.split(r"\r\n|\n|\r", hl7_text) if s.strip()]


def split_messages(hl7_text: str) -> List[List[str]]:
    """Group segments into messages; every MSH line opens a new one.

    Segments found before the first MSH are kept together as a headerless message.
    """
    messages: List[List[str]] = []
    current: List[str] = []
    for line in split_segments(hl7_text):
        if line.startswith("MSH|") and current:
            messages.append(current)
            current = []
        current.append(line)
    if current:
        messages.append(current)
    return messages


def _parse_pid(pid: List[str]) -> Union[PatientRecord, str]:
    # PID-3: lista de identificadores, el primero componente es el id externo
    patient_id = _component(_field(pid, 3), 0)
    if not patient_id:
        return "PID-3 carries no patient identifier"

    name = _field(pid, 5)
    birth = _field(pid, 7)
    addr = _field(pid, 11)
    return PatientRecord(
        patient_id=patient_id,
        last_name=_component(name, 0) or "Unknown",
        first_name=_component(name, 1) or "Unknown",
        birth_date=hl7_date(birth) or None,
        gender=normalize_gender(_field(pid, 8)),
        # street^other^city^state^zip
        address_line=_component(addr, 0) or None,
        city=_component(addr, 2) or None,
        state=_component(addr, 3) or None,
        postal_code=_component(addr, 4) or None,
        phone=_component(_field(pid, 13), 0) or None,
    )


def _parse_obx(
    obx: List[str], patient_id: str, fallback_ts: str
) -> Union[ObservationRecord, str]:
    code = _component(_field(obx, 3), 0)
    if not code:
        return "OBX-3 carries no observation identifier"
    raw_value = _field(obx, 5)
    if not raw_value:
        return "OBX-5 carries no observation value"

    entry = lookup_code(code)
    obs_type = entry.type_tag if entry else re.sub(r"[^a-zA-Z0-9]", "_", code)
    return ObservationRecord(
        patient_id=patient_id,
        observation_type=obs_type,
        observation_value=coerce_value(raw_value),
        observation_unit=_component(_field(obx, 6), 0),
        observation_date=hl7_date(_field(obx, 14) or fallback_ts),
    )


def _parse_message(
    lines: List[str], now: datetime
) -> Tuple[Optional[PatientRecord], List[ObservationRecord], List[SkippedSegment]]:
    segments: List[Segment] = []
    for line in lines:
        fields = _split_fields(line)
        segments.append((fields[0], fields))

    msh = next((f for t, f in segments if t == "MSH"), [])
    fallback_ts = _field(msh, 6) or now.strftime("%Y%m%d%H%M%S")

    pid = next((f for t, f in segments if t == "PID"), None)
    if pid is None:
        return None, [], [SkippedSegment("message has no PID segment", lines[0])]

    patient = _parse_pid(pid)
    if isinstance(patient, str):
        return None, [], [SkippedSegment(patient, "|".join(pid))]

    observations: List[ObservationRecord] = []
    skipped: List[SkippedSegment] = []
    for seg_type, fields in segments:
        if seg_type != "OBX":
            continue
        outcome = _parse_obx(fields, patient.patient_id, fallback_ts)
        if isinstance(outcome, str):
            skipped.append(SkippedSegment(outcome, "|".join(fields)))
        else:
            observations.append(outcome)
    return patient, observations, skipped


def parse_segmented(content: str, processing_time: Optional[datetime] = None) -> ParsedData:
    """Parse one or more concatenated HL7v2 messages.

    Defects are confined to the message or segment that carries them: a message
    without a usable PID and an unreadable OBX are recorded in ``skipped`` and the
    rest of the input is still parsed.
    """
    now = processing_time or datetime.now()
    patients: Dict[str, PatientRecord] = {}
    result = ParsedData()

    for lines in split_messages(content):
        patient, observations, skipped = _parse_message(lines, now)
        result.skipped.extend(skipped)
        if patient is None:
            continue
        patients.setdefault(patient.patient_id, patient)
        result.observations.extend(observations)

    for s in result.skipped:
        logger.warning(f"Segmento omitido: {s.reason} -> {s.segment[:80]}")

    result.patients = list(patients.values())
    return result
