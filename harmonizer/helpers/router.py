from pathlib import PurePath, PurePosixPath
from typing import Literal, Optional

from harmonizer.commons.types import LandingCfg

FormatTag = Literal["tabular", "segmented", "passthrough", "unrecognized"]


class FormatClassifier:
    """Maps an object path to its source format using the landing-zone prefix convention.

    - ``csv-ehr/...``  -> tabular
    - ``hl7v2/...``    -> segmented
    - ``synthea/...``  -> passthrough (already a FHIR bundle)

    Matching is an exact, case-sensitive prefix test.
    """

    def __init__(self, cfg: Optional[LandingCfg] = None):
        cfg = cfg or LandingCfg()
        self.prefixes = (
            (cfg.tabular_prefix, "tabular"),
            (cfg.segmented_prefix, "segmented"),
            (cfg.passthrough_prefix, "passthrough"),
        )
        self.marker_suffix = cfg.marker_suffix
        self.processed_prefix = cfg.processed_prefix

    def classify(self, path: str) -> FormatTag:
        for prefix, tag in self.prefixes:
            if path.startswith(prefix):
                return tag
        return "unrecognized"

    def classify_file(self, path: PurePath) -> FormatTag:
        """Like ``classify`` for a filesystem path: the landing prefix may sit anywhere in it."""
        parts = path.parts
        for i in range(len(parts)):
            tag = self.classify(PurePosixPath(*parts[i:]).as_posix())
            if tag != "unrecognized":
                return tag
        return "unrecognized"

    def skip_reason(self, path: str) -> Optional[str]:
        if path.endswith(self.marker_suffix):
            return f"placeholder marker file ({self.marker_suffix})"
        if path.startswith(self.processed_prefix):
            return f"already processed ({self.processed_prefix})"
        if self.classify(path) == "unrecognized":
            return "unrecognized source prefix"
        return None

    def should_process(self, path: str) -> bool:
        return self.skip_reason(path) is None

    def processed_path(self, path: str) -> str:
        return f"{self.processed_prefix}{path}"
