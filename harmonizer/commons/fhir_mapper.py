import uuid
from typing import Any, Dict, List
from urllib.parse import quote

from harmonizer.commons.logger import logger
from harmonizer.commons.terminology import LOINC_SYSTEM, lookup_type_tag
from harmonizer.parsers.models import ObservationRecord, PatientRecord

PATIENT_IDENTIFIER_SYSTEM = "urn:fhir-pipeline:patient-id"
OBSERVATION_IDENTIFIER_SYSTEM = "urn:fhir-pipeline:observation-id"
UCUM_SYSTEM = "http://unitsofmeasure.org"


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def _search_escape(value: str) -> str:
    # escapes de token en búsquedas FHIR
    for ch in ("\\", ",", "|", "$"):
        value = value.replace(ch, "\\" + ch)
    return value


def _if_none_exist(system: str, value: str) -> str:
    return f"identifier={system}|{quote(_search_escape(value), safe=':-._~')}"


def map_patient(patient: PatientRecord) -> Dict[str, Any]:
    resource: Dict[str, Any] = {
        "resourceType": "Patient",
        "identifier": [{"system": PATIENT_IDENTIFIER_SYSTEM, "value": patient.patient_id}],
        "name": [
            {"use": "official", "family": patient.last_name, "given": [patient.first_name]}
        ],
        "gender": patient.gender,
    }
    if patient.birth_date:
        resource["birthDate"] = patient.birth_date

    telecom = []
    if patient.phone:
        telecom.append({"system": "phone", "value": patient.phone, "use": "home"})
    if patient.email:
        telecom.append({"system": "email", "value": patient.email})
    if telecom:
        resource["telecom"] = telecom

    if patient.address_line or patient.city or patient.state or patient.postal_code:
        resource["address"] = [
            _drop_none(
                {
                    "use": "home",
                    "line": [patient.address_line] if patient.address_line else None,
                    "city": patient.city,
                    "state": patient.state,
                    "postalCode": patient.postal_code,
                    "country": "US",
                }
            )
        ]
    return resource


def observation_identifier(observation: ObservationRecord) -> str:
    """Composite key patient:type:date:value. Stable across runs for the same reading."""
    return ":".join(
        [
            observation.patient_id,
            observation.observation_type,
            observation.observation_date,
            str(observation.observation_value),
        ]
    )


def map_observation(observation: ObservationRecord, patient_reference: str) -> Dict[str, Any]:
    entry = lookup_type_tag(observation.observation_type)
    code: Dict[str, Any] = {}
    if entry:
        code["coding"] = [{"system": LOINC_SYSTEM, "code": entry.code, "display": entry.display}]
    code["text"] = observation.observation_type.replace("_", " ")

    resource: Dict[str, Any] = {
        "resourceType": "Observation",
        "identifier": [
            {"system": OBSERVATION_IDENTIFIER_SYSTEM, "value": observation_identifier(observation)}
        ],
        "status": "final",
        "code": code,
        "subject": {"reference": patient_reference},
        "effectiveDateTime": observation.observation_date,
    }

    value = observation.observation_value
    # bool es subclase de int
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        resource["valueQuantity"] = {
            "value": value,
            "unit": observation.observation_unit,
            "system": UCUM_SYSTEM,
            "code": observation.observation_unit,
        }
    else:
        resource["valueString"] = str(value)
    return resource


def build_bundle(
    patients: List[PatientRecord], observations: List[ObservationRecord]
) -> Dict[str, Any]:
    """Assemble a FHIR transaction bundle.

    Every patient gets a fresh ``urn:uuid`` valid only inside this bundle; observations
    point at it. Patient entries come first, then observations, both in input order.
    Observations whose patient is not part of ``patients`` are dropped. Each entry is a
    conditional create (``ifNoneExist``) keyed on the resource identifier, so posting the
    same data twice does not duplicate anything in the store.
    """
    entries: List[Dict[str, Any]] = []
    temp_ids: Dict[str, str] = {}

    for patient in patients:
        full_url = f"urn:uuid:{uuid.uuid4()}"
        temp_ids.setdefault(patient.patient_id, full_url)
        entries.append(
            {
                "fullUrl": full_url,
                "resource": map_patient(patient),
                "request": {
                    "method": "POST",
                    "url": "Patient",
                    "ifNoneExist": _if_none_exist(PATIENT_IDENTIFIER_SYSTEM, patient.patient_id),
                },
            }
        )

    for observation in observations:
        patient_ref = temp_ids.get(observation.patient_id)
        if not patient_ref:
            logger.warning(
                f"Observación sin paciente en el bundle, se descarta: patient_id={observation.patient_id}"
            )
            continue
        entries.append(
            {
                "fullUrl": f"urn:uuid:{uuid.uuid4()}",
                "resource": map_observation(observation, patient_ref),
                "request": {
                    "method": "POST",
                    "url": "Observation",
                    "ifNoneExist": _if_none_exist(
                        OBSERVATION_IDENTIFIER_SYSTEM, observation_identifier(observation)
                    ),
                },
            }
        )

    return {"resourceType": "Bundle", "type": "transaction", "entry": entries}
