import json

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from harmonizer.commons.logger import logger
from harmonizer.services.harmonization_service import HarmonizationService


def create_app(service: HarmonizationService, service_name: str = "fhir-harmonization") -> FastAPI:
    app = FastAPI(title="FHIR Harmonization Service")
    app.state.service = service

    @app.get("/")
    def health():
        return {"status": "healthy", "service": service_name}

    @app.post("/")
    async def handle_event(request: Request):
        raw = await request.body()
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            logger.warning("Cuerpo de la petición no es JSON")
            payload = None
        # el dispatcher es bloqueante (descarga + POST al store)
        outcome = await run_in_threadpool(app.state.service.handle, payload)
        return JSONResponse(status_code=outcome.status_code, content=outcome.body)

    return app
