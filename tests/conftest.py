from datetime import datetime

import pytest

from harmonizer.commons.errors import StorageError, SubmissionError
from harmonizer.commons.harmonization_engine import HarmonizationEngine
from harmonizer.services.harmonization_service import HarmonizationService

FIXED_NOW = datetime(2024, 3, 1, 9, 30, 0)


class FakeStorage:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.moves = []

    def download(self, bucket, name):
        try:
            return self.objects[(bucket, name)]
        except KeyError:
            raise StorageError(f"no such object {bucket}/{name}")

    def move(self, bucket, src, dst):
        self.objects[(bucket, dst)] = self.objects.pop((bucket, src))
        self.moves.append((bucket, src, dst))

    def copy(self, bucket, src, dst):
        self.objects[(bucket, dst)] = self.objects[(bucket, src)]


class FakeFHIRStore:
    """Answers every entry with `status`, except the indexes listed in `failing`."""

    def __init__(self, status="201 Created", failing=(), reject=None):
        self.status = status
        self.failing = set(failing)
        self.reject = reject
        self.bundles = []

    def execute_bundle(self, bundle):
        self.bundles.append(bundle)
        if self.reject:
            raise SubmissionError(self.reject, status=400)
        return {
            "resourceType": "Bundle",
            "type": "transaction-response",
            "entry": [
                {"response": {"status": "409 Conflict" if i in self.failing else self.status}}
                for i, _ in enumerate(bundle.get("entry") or [])
            ],
        }


@pytest.fixture
def engine():
    return HarmonizationEngine(clock=lambda: FIXED_NOW)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def fhir_store():
    return FakeFHIRStore()


@pytest.fixture
def service(engine, storage, fhir_store):
    return HarmonizationService(engine, storage, fhir_store)
