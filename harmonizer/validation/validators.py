# harmonizer/validation/validators.py
import base64
import binascii
import json
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from harmonizer.commons.errors import EventDecodeError, PassthroughError

M = TypeVar("M", bound=BaseModel)


class StorageObjectRef(BaseModel):
    bucket: str
    name: str

    @field_validator("bucket", "name")
    @classmethod
    def _not_empty(cls, v: str):
        if not v or not v.strip():
            raise ValueError("bucket y name son obligatorios")
        return v


class CloudEventEnvelope(BaseModel):
    data: StorageObjectRef


class PubSubMessage(BaseModel):
    data: str


class PubSubPushEnvelope(BaseModel):
    message: PubSubMessage


class PassthroughBundle(BaseModel):
    model_config = ConfigDict(extra="allow")

    resourceType: Literal["Bundle"]
    entry: Optional[List[Dict[str, Any]]] = None


def _validate(model: Type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as ve:
        raise EventDecodeError(f"Invalid {model.__name__}: {ve}") from ve


def decode_event(payload: Any) -> StorageObjectRef:
    """Accepts the three notification layouts we receive for a landed object.

    - flat:     ``{"bucket": ..., "name": ...}``
    - nested:   ``{"data": {"bucket": ..., "name": ...}}`` (CloudEvent / Eventarc)
    - envelope: ``{"message": {"data": base64(json)}}`` (Pub/Sub push)
    """
    if not isinstance(payload, dict):
        raise EventDecodeError("Unknown event format: payload is not a JSON object")

    if payload.get("bucket") and payload.get("name"):
        return _validate(StorageObjectRef, payload)

    data = payload.get("data")
    if isinstance(data, dict) and data.get("bucket") and data.get("name"):
        return _validate(CloudEventEnvelope, payload).data

    message = payload.get("message")
    if isinstance(message, dict) and message.get("data"):
        push = _validate(PubSubPushEnvelope, payload)
        try:
            decoded = json.loads(base64.b64decode(push.message.data, validate=True))
        except (binascii.Error, ValueError) as ex:
            raise EventDecodeError(f"Pub/Sub message data is not base64 JSON: {ex}") from ex
        return _validate(StorageObjectRef, decoded)

    raise EventDecodeError("Unknown event format")


def validate_passthrough_bundle(text: str) -> Dict[str, Any]:
    """Checks that the file is a FHIR Bundle and hands back the document untouched."""
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as ex:
        raise PassthroughError(f"Passthrough file is not valid JSON: {ex}") from ex
    try:
        PassthroughBundle.model_validate(doc)
    except ValidationError as ve:
        raise PassthroughError(f"Passthrough file is not a FHIR Bundle: {ve}") from ve
    return doc
