from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from harmonizer.commons.fhir_mapper import build_bundle
from harmonizer.parsers.models import ParsedData
from harmonizer.parsers.segmented import parse_segmented
from harmonizer.parsers.tabular import parse_tabular


class HarmonizationEngine:
    """Engine facade: picks the parser for a source format and maps the result to a bundle.

    ``clock`` only exists so tests can pin the processing date used for records that
    carry no date of their own.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.now

    def parse(self, fmt: str, content: str) -> ParsedData:
        now = self.clock()
        if fmt == "tabular":
            return parse_tabular(content, processing_date=now.date())
        if fmt == "segmented":
            return parse_segmented(content, processing_time=now)
        raise ValueError(f"No parser for source format '{fmt}'")

    def to_bundle(self, parsed: ParsedData) -> Dict:
        return build_bundle(parsed.patients, parsed.observations)

    def parse_and_map(self, fmt: str, content: str) -> Tuple[ParsedData, Dict]:
        parsed = self.parse(fmt, content)
        return parsed, self.to_bundle(parsed)
