import shutil
from pathlib import Path
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage

from harmonizer.commons.errors import StorageError


class GCSStorage:
    """Object storage collaborator backed by Cloud Storage."""

    def __init__(self, client: Optional[storage.Client] = None):
        self._client = client

    @property
    def client(self) -> storage.Client:
        # se crea al primer uso para no exigir credenciales al importar/arrancar
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def download(self, bucket: str, name: str) -> str:
        try:
            raw = self.client.bucket(bucket).blob(name).download_as_bytes()
            return raw.decode("utf-8")
        except (GoogleAPIError, UnicodeDecodeError) as ex:
            raise StorageError(f"Cannot read gs://{bucket}/{name}: {ex}") from ex

    def move(self, bucket: str, src: str, dst: str) -> None:
        b = self.client.bucket(bucket)
        try:
            b.rename_blob(b.blob(src), dst)
        except GoogleAPIError as ex:
            raise StorageError(f"Cannot move gs://{bucket}/{src} -> {dst}: {ex}") from ex

    def copy(self, bucket: str, src: str, dst: str) -> None:
        b = self.client.bucket(bucket)
        try:
            b.copy_blob(b.blob(src), b, dst)
        except GoogleAPIError as ex:
            raise StorageError(f"Cannot copy gs://{bucket}/{src} -> {dst}: {ex}") from ex


class LocalStorage:
    """Filesystem stand-in: the bucket is a directory, the name a path relative to it."""

    def _path(self, bucket: str, name: str) -> Path:
        root = Path(bucket).resolve()
        p = (root / name).resolve()
        # el nombre no puede salir del directorio del bucket
        if p != root and root not in p.parents:
            raise StorageError(f"Object name escapes bucket {root}: {name}")
        return p

    def download(self, bucket: str, name: str) -> str:
        p = self._path(bucket, name)
        try:
            return p.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as ex:
            raise StorageError(f"Cannot read {p}: {ex}") from ex

    def move(self, bucket: str, src: str, dst: str) -> None:
        target = self._path(bucket, dst)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.move(str(self._path(bucket, src)), str(target))
        except OSError as ex:
            raise StorageError(f"Cannot move {src} -> {dst}: {ex}") from ex

    def copy(self, bucket: str, src: str, dst: str) -> None:
        target = self._path(bucket, dst)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(self._path(bucket, src), target)
        except OSError as ex:
            raise StorageError(f"Cannot copy {src} -> {dst}: {ex}") from ex
