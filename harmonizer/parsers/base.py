import math
import re
from typing import List

from .models import ObservationValue

_HL7_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})")


def _split_fields(seg: str) -> List[str]:
    return seg.split("|")


def _split_comp(val: str) -> List[str]:
    return val.split("^") if val else []


def _field(fields: List[str], idx: int) -> str:
    return fields[idx].strip() if len(fields) > idx else ""


def _component(val: str, idx: int) -> str:
    comp = _split_comp(val)
    return comp[idx].strip() if len(comp) > idx else ""


def normalize_gender(raw: str) -> str:
    """Collapse any sex/gender notation into male, female, other or unknown."""
    value = (raw or "").strip().lower()
    if value in ("m", "male"):
        return "male"
    if value in ("f", "female"):
        return "female"
    if value in ("o", "other"):
        return "other"
    return "unknown"


def coerce_value(raw: str) -> ObservationValue:
    """Numeric-looking text becomes a number (int when integral), anything else stays text."""
    text = (raw or "").strip()
    # float() accepts "1_000", which is not a reading
    if not text or "_" in text:
        return text
    try:
        num = float(text)
    except ValueError:
        return text
    if not math.isfinite(num):
        return text
    if num.is_integer():
        return int(num)
    return num


def hl7_date(raw: str) -> str:
    """YYYYMMDD[HHMMSS...] -> YYYY-MM-DD; other shapes are returned untouched."""
    m = _HL7_DATE.match(raw or "")
    if not m:
        return raw or ""
    return f"{m.group(1)}-{m.group(2)}-{m.group(3)}"
