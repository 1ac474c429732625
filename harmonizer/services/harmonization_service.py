# harmonizer/services/harmonization_service.py
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Tuple

from harmonizer.commons.errors import EventDecodeError, HarmonizationError
from harmonizer.commons.harmonization_engine import HarmonizationEngine
from harmonizer.commons.logger import logger
from harmonizer.commons.types import Settings
from harmonizer.helpers.fhir_store import FHIRStoreClient, google_token_provider
from harmonizer.helpers.router import FormatClassifier
from harmonizer.helpers.storage import GCSStorage, LocalStorage
from harmonizer.validation.validators import decode_event, validate_passthrough_bundle

FinalState = Literal["skipped", "reported", "failed"]


@dataclass
class DispatchOutcome:
    status_code: int
    body: Dict[str, Any]
    state: FinalState


def count_entry_statuses(response_bundle: Optional[Dict[str, Any]]) -> Tuple[int, int]:
    """(successes, failures) of a transaction-response; success = status starting with "2"."""
    entries = (response_bundle or {}).get("entry") or []
    ok = sum(
        1 for e in entries if str((e.get("response") or {}).get("status", "")).startswith("2")
    )
    return ok, len(entries) - ok


class HarmonizationService:
    """One landed file in, one FHIR transaction out.

    Received -> Classified -> Skipped
                           -> Parsed -> Mapped -> Submitted -> Reported
    Any error after decoding the event ends in Failed (500); nothing is retried here,
    redelivery of the same event is safe because every entry is a conditional create.
    """

    def __init__(
        self,
        engine: HarmonizationEngine,
        storage,
        fhir_store,
        classifier: Optional[FormatClassifier] = None,
        archive_processed: bool = False,
    ):
        self.engine = engine
        self.storage = storage
        self.fhir_store = fhir_store
        self.classifier = classifier or FormatClassifier()
        self.archive_processed = archive_processed

    @classmethod
    def from_settings(cls, settings: Settings, storage=None) -> "HarmonizationService":
        store_cfg = settings.fhir_store
        token_provider = google_token_provider() if store_cfg.use_google_auth else None
        fhir_store = FHIRStoreClient(
            store_cfg.store_url(), token_provider=token_provider, timeout=store_cfg.timeout_sec
        )
        if storage is None:
            storage = LocalStorage() if settings.storage.backend == "local" else GCSStorage()
        return cls(
            HarmonizationEngine(),
            storage,
            fhir_store,
            classifier=FormatClassifier(settings.landing),
            archive_processed=settings.landing.archive_processed,
        )

    def handle(self, payload: Any) -> DispatchOutcome:
        try:
            ref = decode_event(payload)
        except EventDecodeError as ex:
            logger.error(f"Formato de evento desconocido: {ex}")
            return DispatchOutcome(
                ex.status_code, {"error": "Unknown event format", "details": str(ex)}, "failed"
            )

        logger.info(f"Evento recibido para {ref.bucket}/{ref.name}")
        try:
            return self.process(ref.bucket, ref.name)
        except Exception as ex:
            status = ex.status_code if isinstance(ex, HarmonizationError) else 500
            logger.exception(f"Error procesando {ref.name}: {ex}")
            return DispatchOutcome(
                status,
                {"error": "Failed to process file", "file": ref.name, "details": str(ex)},
                "failed",
            )

    def process(self, bucket: str, name: str) -> DispatchOutcome:
        reason = self.classifier.skip_reason(name)
        if reason:
            logger.info(f"Archivo omitido {name}: {reason}")
            return DispatchOutcome(
                200,
                {"message": "Skipped - not a processable file", "file": name, "reason": reason},
                "skipped",
            )

        fmt = self.classifier.classify(name)
        content = self.storage.download(bucket, name)
        logger.info(f"Procesando archivo {fmt} {name} ({len(content)} caracteres)")

        if fmt == "passthrough":
            bundle = validate_passthrough_bundle(content)
            body: Dict[str, Any] = {"message": "Synthea bundle processed successfully", "file": name}
        else:
            parsed, bundle = self.engine.parse_and_map(fmt, content)
            logger.info(
                f"Parseados {len(parsed.patients)} pacientes y {len(parsed.observations)} "
                f"observaciones ({len(parsed.skipped)} segmentos omitidos)"
            )
            body = {
                "message": "File processed successfully",
                "file": name,
                "patientsCreated": len(parsed.patients),
                "observationsCreated": len(parsed.observations),
                "segmentsSkipped": len(parsed.skipped),
            }

        entries = len(bundle.get("entry") or [])
        logger.info(f"Enviando bundle con {entries} entradas")
        response = self.fhir_store.execute_bundle(bundle)
        ok, failed = count_entry_statuses(response)
        logger.info(f"Resultado: {ok} exitosas, {failed} fallidas")

        body.update(bundleEntriesProcessed=entries, successCount=ok, errorCount=failed)

        if self.archive_processed and failed == 0:
            dst = self.classifier.processed_path(name)
            self.storage.move(bucket, name, dst)
            logger.info(f"Archivo archivado en {dst}")

        return DispatchOutcome(200, body, "reported")
