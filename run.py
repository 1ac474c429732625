import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

import typer
import uvicorn
import yaml

from harmonizer.commons.fhir_mapper import PATIENT_IDENTIFIER_SYSTEM
from harmonizer.commons.harmonization_engine import HarmonizationEngine
from harmonizer.commons.logger import setup_logging
from harmonizer.commons.types import Settings, build_settings
from harmonizer.helpers.router import FormatClassifier
from harmonizer.helpers.storage import LocalStorage
from harmonizer.services.harmonization_service import HarmonizationService
from harmonizer.services.http_app import create_app
from harmonizer.services.landing_service import LandingService

app = typer.Typer(add_completion=False, help="FHIR Harmonization Service")


def resource_path(relative_path: str) -> str:
    """Devuelve la ruta absoluta a un recurso, ya sea ejecutando como .exe o en desarrollo"""
    if hasattr(sys, "_MEIPASS"):
        # Si es un ejecutable generado por PyInstaller
        base_path = sys._MEIPASS
    else:
        base_path = os.path.dirname(os.path.abspath(__file__))

    return os.path.join(base_path, relative_path)


def load_cfg(path: Optional[str] = None) -> Settings:
    config_path = path or os.getenv("HARMONIZER_CONFIG") or resource_path(
        "harmonizer/configs/settings.yaml"
    )
    with open(config_path, "r", encoding="utf-8") as f:
        return build_settings(yaml.safe_load(f))


def _init(config: Optional[str]) -> Settings:
    cfg = load_cfg(config)
    setup_logging(cfg.paths.logs_root, cfg.app.log_level, cfg.app.log_to_file)
    return cfg


def _echo(data: dict):
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


@app.command()
def serve(config: Optional[str] = typer.Option(None, help="ruta a settings.yaml")):
    """Expone el endpoint HTTP que recibe las notificaciones de archivo."""
    cfg = _init(config)
    service = HarmonizationService.from_settings(cfg)
    typer.echo(f"Harmonization service escuchando en {cfg.app.host}:{cfg.app.port}")
    typer.echo(f"FHIR store: {cfg.fhir_store.store_url()}")
    uvicorn.run(create_app(service, cfg.app.name), host=cfg.app.host, port=cfg.app.port)


@app.command()
def ingest(
    bucket: str = typer.Option(..., help="bucket (o directorio con --local)"),
    name: str = typer.Option(..., help="ruta del objeto, p.ej. hl7v2/batch1.hl7"),
    local: bool = typer.Option(False, help="leer desde el sistema de archivos"),
    config: Optional[str] = typer.Option(None, help="ruta a settings.yaml"),
):
    """Procesa una única notificación y muestra el resultado."""
    cfg = _init(config)
    service = HarmonizationService.from_settings(cfg, storage=LocalStorage() if local else None)
    outcome = service.handle({"bucket": bucket, "name": name})
    _echo(outcome.body)
    if outcome.state == "failed":
        raise typer.Exit(code=1)


@app.command()
def convert(
    file: Path = typer.Argument(..., exists=True, dir_okay=False),
    source_format: Optional[str] = typer.Option(
        None, "--format", help="tabular | segmented; por defecto se deduce de la ruta"
    ),
):
    """Convierte un archivo local a bundle FHIR sin enviarlo."""
    fmt = source_format or FormatClassifier().classify_file(file)
    if fmt not in ("tabular", "segmented"):
        typer.echo(f"Formato no convertible: {fmt}", err=True)
        raise typer.Exit(code=2)
    _, bundle = HarmonizationEngine().parse_and_map(fmt, file.read_text(encoding="utf-8"))
    _echo(bundle)


@app.command()
def watch(
    root: Optional[str] = typer.Option(None, help="zona de aterrizaje local"),
    config: Optional[str] = typer.Option(None, help="ruta a settings.yaml"),
):
    """Procesa el backlog de la zona de aterrizaje local y queda escuchando."""
    cfg = _init(config)
    service = HarmonizationService.from_settings(cfg, storage=LocalStorage())
    svc = LandingService(service, root or cfg.paths.landing_root)
    asyncio.run(svc.run_file_mode())


@app.command()
def lookup_patient(
    patient_id: str = typer.Argument(...),
    config: Optional[str] = typer.Option(None, help="ruta a settings.yaml"),
):
    """Busca en el FHIR store el Patient con este identificador externo."""
    cfg = _init(config)
    service = HarmonizationService.from_settings(cfg)
    result = service.fhir_store.search_resource(
        "Patient", {"identifier": f"{PATIENT_IDENTIFIER_SYSTEM}|{patient_id}"}
    )
    _echo(result)


if __name__ == "__main__":
    app()
