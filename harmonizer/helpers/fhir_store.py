import json
from typing import Any, Callable, Dict, Optional

import google.auth
import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request

from harmonizer.commons.errors import FHIRStoreError, SubmissionError
from harmonizer.commons.logger import logger

CLOUD_HEALTHCARE_SCOPE = "https://www.googleapis.com/auth/cloud-healthcare"

TokenProvider = Callable[[], str]


def google_token_provider(scope: str = CLOUD_HEALTHCARE_SCOPE) -> TokenProvider:
    """Bearer tokens from Application Default Credentials, refreshed when expired."""
    credentials, _ = google.auth.default(scopes=[scope])

    def _token() -> str:
        if not credentials.valid:
            credentials.refresh(Request())
        return credentials.token

    return _token


class FHIRStoreClient:
    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        # sin timeout propio: manda el deadline de la plataforma que invoca
        self.client = client or httpx.Client(timeout=timeout)

    def _headers(self, accept_only: bool = False) -> Dict[str, str]:
        headers = {"Accept": "application/fhir+json"}
        if not accept_only:
            headers["Content-Type"] = "application/fhir+json"
        if self.token_provider:
            try:
                headers["Authorization"] = f"Bearer {self.token_provider()}"
            except GoogleAuthError as ex:
                raise FHIRStoreError(f"Cannot obtain access token: {ex}") from ex
        return headers

    def execute_bundle(self, bundle: Dict[str, Any]) -> Dict[str, Any]:
        """POST a transaction bundle; returns the transaction-response bundle."""
        headers = self._headers()
        try:
            resp = self.client.post(self.base_url, content=json.dumps(bundle), headers=headers)
        except httpx.HTTPError as ex:
            raise SubmissionError(f"FHIR bundle submission failed: {ex}") from ex

        if not resp.is_success:
            raise SubmissionError(
                f"FHIR bundle execution failed: {resp.status_code} {resp.reason_phrase} - {resp.text}",
                status=resp.status_code,
                body=resp.text,
            )
        logger.debug(f"Bundle aceptado por el FHIR store ({resp.status_code})")
        try:
            return resp.json()
        except ValueError as ex:
            raise SubmissionError(f"FHIR store answered with a non-JSON body: {ex}") from ex

    def search_resource(
        self, resource_type: str, params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        headers = self._headers(accept_only=True)
        try:
            resp = self.client.get(f"{self.base_url}/{resource_type}", params=params, headers=headers)
        except httpx.HTTPError as ex:
            raise FHIRStoreError(f"FHIR search failed: {ex}") from ex
        if not resp.is_success:
            raise FHIRStoreError(
                f"FHIR search failed: {resp.status_code} {resp.reason_phrase} - {resp.text}",
                status=resp.status_code,
                body=resp.text,
            )
        return resp.json()

    def close(self) -> None:
        self.client.close()
