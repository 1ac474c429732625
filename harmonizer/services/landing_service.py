# harmonizer/services/landing_service.py
import asyncio
from pathlib import Path
from typing import List, Optional

from harmonizer.commons.logger import logger
from harmonizer.helpers.file_transport import FileWatcher
from harmonizer.services.harmonization_service import DispatchOutcome, HarmonizationService


class LandingService:
    """Local landing zone: a directory laid out like the bucket (csv-ehr/, hl7v2/, synthea/).

    Every file found there is turned into the same ``{bucket, name}`` notification the
    cloud trigger sends, and goes through the regular dispatcher.
    """

    def __init__(self, service: HarmonizationService, landing_root: str):
        self.service = service
        self.root = Path(landing_root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def event_for(self, path: Path) -> dict:
        return {"bucket": str(self.root), "name": path.relative_to(self.root).as_posix()}

    async def process_path(self, path: str) -> Optional[DispatchOutcome]:
        p = Path(path).resolve()
        if not p.is_file():
            return None
        outcome = await asyncio.to_thread(self.service.handle, self.event_for(p))
        if outcome.state == "failed":
            logger.error(f"Fallo procesando {p}: {outcome.body.get('details')}")
        elif outcome.state == "reported":
            logger.info(
                f"Procesado {p.name}: {outcome.body['successCount']} ok / "
                f"{outcome.body['errorCount']} con error"
            )
        return outcome

    async def process_backlog(self) -> List[DispatchOutcome]:
        classifier = self.service.classifier
        files = sorted(
            p
            for p in self.root.rglob("*")
            if p.is_file() and classifier.should_process(p.relative_to(self.root).as_posix())
        )
        if not files:
            return []
        logger.info(f"Backlog detectado: {len(files)} archivo(s) en {self.root}")
        outcomes = []
        for f in files:
            outcome = await self.process_path(str(f))
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    async def run_file_mode(self):
        loop = asyncio.get_running_loop()

        # 1) Procesar backlog existente
        await self.process_backlog()

        # 2) Arrancar watcher para nuevos archivos
        watcher = FileWatcher(str(self.root), "*", self.process_path, loop)
        watcher.start()
        logger.info(f"Escuchando zona de aterrizaje {self.root}...")
        try:
            await asyncio.Event().wait()
        finally:
            watcher.stop()
