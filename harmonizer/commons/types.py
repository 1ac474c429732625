import os
from typing import Any, Dict, Optional

from pydantic import BaseModel


class AppCfg(BaseModel):
    name: str = "fhir-harmonization"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_to_file: bool = False


class PathsCfg(BaseModel):
    logs_root: str = "logs"
    landing_root: str = "landing"


class LandingCfg(BaseModel):
    tabular_prefix: str = "csv-ehr/"
    segmented_prefix: str = "hl7v2/"
    passthrough_prefix: str = "synthea/"
    marker_suffix: str = ".gitkeep"
    processed_prefix: str = "processed/"
    archive_processed: bool = False


class FHIRStoreCfg(BaseModel):
    project_id: str = ""
    location: str = "us-west2"
    dataset_id: str = "fhir_dataset"
    fhir_store_id: str = "fhir_r4_store"
    # URL explícita (p.ej. un HAPI local); si está vacía se arma la de Cloud Healthcare
    base_url: str = ""
    use_google_auth: bool = True
    timeout_sec: Optional[float] = None

    def store_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return (
            "https://healthcare.googleapis.com/v1"
            f"/projects/{self.project_id}/locations/{self.location}"
            f"/datasets/{self.dataset_id}/fhirStores/{self.fhir_store_id}/fhir"
        )


class StorageCfg(BaseModel):
    backend: str = "gcs"  # gcs | local


class Settings(BaseModel):
    app: AppCfg = AppCfg()
    paths: PathsCfg = PathsCfg()
    landing: LandingCfg = LandingCfg()
    fhir_store: FHIRStoreCfg = FHIRStoreCfg()
    storage: StorageCfg = StorageCfg()


# env var -> (section, key)
ENV_OVERRIDES = {
    "PROJECT_ID": ("fhir_store", "project_id"),
    "LOCATION": ("fhir_store", "location"),
    "DATASET_ID": ("fhir_store", "dataset_id"),
    "FHIR_STORE_ID": ("fhir_store", "fhir_store_id"),
    "FHIR_BASE_URL": ("fhir_store", "base_url"),
    "PORT": ("app", "port"),
    "LOG_LEVEL": ("app", "log_level"),
}


def build_settings(raw: Optional[Dict[str, Any]] = None, environ=None) -> Settings:
    """Merge the YAML document with the environment overrides and validate it."""
    environ = os.environ if environ is None else environ
    data: Dict[str, Dict[str, Any]] = {k: dict(v or {}) for k, v in (raw or {}).items()}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            data.setdefault(section, {})[key] = value
    return Settings.model_validate(data)
