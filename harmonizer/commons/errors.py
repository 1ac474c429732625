from typing import Optional


class HarmonizationError(Exception):
    """Base error for the harmonization pipeline. `status_code` is what the dispatcher reports."""

    status_code = 500


class EventDecodeError(HarmonizationError):
    status_code = 400


class TabularParseError(HarmonizationError):
    pass


class PassthroughError(HarmonizationError):
    pass


class StorageError(HarmonizationError):
    pass


class FHIRStoreError(HarmonizationError):
    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class SubmissionError(FHIRStoreError):
    """The store rejected the whole transaction (or never answered)."""
