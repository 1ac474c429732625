import csv
import io
from datetime import date
from typing import Dict, List, Optional

from harmonizer.commons.errors import TabularParseError

from .base import coerce_value, normalize_gender
from .models import ObservationRecord, ParsedData, PatientRecord

REQUIRED_COLUMNS = ("patient_id", "first_name", "last_name", "birth_date", "gender")


def _opt(row: Dict[str, str], col: str) -> Optional[str]:
    return row.get(col) or None


def _read_rows(content: str) -> List[Dict[str, str]]:
    """Header-driven rows with trimmed keys/values. Any structural defect aborts the parse."""
    reader = csv.reader(io.StringIO(content.lstrip("\ufeff")), strict=True)
    header: List[str] = []
    rows: List[Dict[str, str]] = []
    try:
        for raw in reader:
            if not any(cell.strip() for cell in raw):
                continue
            cells = [cell.strip() for cell in raw]
            if not header:
                header = cells
                continue
            if len(cells) != len(header):
                raise TabularParseError(
                    f"Line {reader.line_num}: expected {len(header)} fields, got {len(cells)}"
                )
            rows.append(dict(zip(header, cells)))
    except csv.Error as ex:
        raise TabularParseError(f"Line {reader.line_num}: {ex}") from ex

    missing = [c for c in REQUIRED_COLUMNS if header and c not in header]
    if missing:
        raise TabularParseError(f"Missing required columns: {', '.join(missing)}")
    return rows


def parse_tabular(content: str, processing_date: Optional[date] = None) -> ParsedData:
    today = (processing_date or date.today()).isoformat()
    patients: Dict[str, PatientRecord] = {}
    observations: List[ObservationRecord] = []

    for idx, row in enumerate(_read_rows(content), start=1):
        patient_id = row.get("patient_id", "")
        if not patient_id:
            raise TabularParseError(f"Row {idx}: patient_id is empty")

        # primera aparición gana
        if patient_id not in patients:
            patients[patient_id] = PatientRecord(
                patient_id=patient_id,
                first_name=row.get("first_name", ""),
                last_name=row.get("last_name", ""),
                birth_date=_opt(row, "birth_date"),
                gender=normalize_gender(row.get("gender", "")),
                address_line=_opt(row, "address_line"),
                city=_opt(row, "city"),
                state=_opt(row, "state"),
                postal_code=_opt(row, "postal_code"),
                phone=_opt(row, "phone"),
                email=_opt(row, "email"),
            )

        obs_type = row.get("observation_type", "")
        obs_value = row.get("observation_value", "")
        if obs_type and obs_value:
            observations.append(
                ObservationRecord(
                    patient_id=patient_id,
                    observation_type=obs_type,
                    observation_value=coerce_value(obs_value),
                    observation_unit=row.get("observation_unit", ""),
                    observation_date=row.get("observation_date") or today,
                )
            )

    return ParsedData(patients=list(patients.values()), observations=observations)
