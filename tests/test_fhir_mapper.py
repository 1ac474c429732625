from urllib.parse import unquote

import pytest

from harmonizer.commons.fhir_mapper import (
    OBSERVATION_IDENTIFIER_SYSTEM,
    PATIENT_IDENTIFIER_SYSTEM,
    build_bundle,
    map_observation,
    map_patient,
)
from harmonizer.commons.harmonization_engine import HarmonizationEngine
from harmonizer.parsers.models import ObservationRecord, PatientRecord


def make_patient(pid="P001", **kw):
    base = dict(patient_id=pid, first_name="John", last_name="Doe", birth_date="1990-01-15", gender="male")
    base.update(kw)
    return PatientRecord(**base)


def make_obs(pid="P001", obs_type="heart_rate", value=72, unit="bpm", day="2024-01-15"):
    return ObservationRecord(
        patient_id=pid,
        observation_type=obs_type,
        observation_value=value,
        observation_unit=unit,
        observation_date=day,
    )


# ----------------- Patient -----------------
def test_map_patient_minimal():
    res = map_patient(make_patient())
    assert res["resourceType"] == "Patient"
    assert res["identifier"] == [{"system": PATIENT_IDENTIFIER_SYSTEM, "value": "P001"}]
    assert res["name"] == [{"use": "official", "family": "Doe", "given": ["John"]}]
    assert res["gender"] == "male"
    assert res["birthDate"] == "1990-01-15"
    assert "telecom" not in res
    assert "address" not in res


def test_map_patient_contact_and_address():
    res = map_patient(
        make_patient(
            address_line="123 Main St",
            city="Boston",
            state="MA",
            postal_code="02101",
            phone="555-123-4567",
            email="john@example.com",
        )
    )
    assert res["telecom"] == [
        {"system": "phone", "value": "555-123-4567", "use": "home"},
        {"system": "email", "value": "john@example.com"},
    ]
    assert res["address"] == [
        {
            "use": "home",
            "line": ["123 Main St"],
            "city": "Boston",
            "state": "MA",
            "postalCode": "02101",
            "country": "US",
        }
    ]


def test_map_patient_partial_address_has_no_line():
    res = map_patient(make_patient(city="Boston"))
    assert res["address"] == [{"use": "home", "city": "Boston", "country": "US"}]


def test_map_patient_without_birth_date():
    assert "birthDate" not in map_patient(make_patient(birth_date=None))


# ----------------- Observation -----------------
def test_map_observation_known_code_numeric():
    res = map_observation(make_obs(), "urn:uuid:abc")
    assert res["status"] == "final"
    assert res["code"]["coding"] == [
        {"system": "http://loinc.org", "code": "8867-4", "display": "Heart rate"}
    ]
    assert res["code"]["text"] == "heart rate"
    assert res["subject"] == {"reference": "urn:uuid:abc"}
    assert res["effectiveDateTime"] == "2024-01-15"
    assert res["valueQuantity"] == {
        "value": 72,
        "unit": "bpm",
        "system": "http://unitsofmeasure.org",
        "code": "bpm",
    }
    assert "valueString" not in res
    assert res["identifier"] == [
        {"system": OBSERVATION_IDENTIFIER_SYSTEM, "value": "P001:heart_rate:2024-01-15:72"}
    ]


def test_map_observation_unknown_tag_and_text_value():
    res = map_observation(make_obs(obs_type="blood_type", value="A+", unit=""), "urn:uuid:x")
    assert "coding" not in res["code"]
    assert res["code"]["text"] == "blood type"
    assert res["valueString"] == "A+"
    assert "valueQuantity" not in res


# ----------------- Bundle -----------------
def test_bundle_two_patients_three_observations_one_orphan():
    patients = [make_patient("P001"), make_patient("P002", first_name="Jane", gender="female")]
    observations = [
        make_obs("P001", value=72),
        make_obs("P002", obs_type="body_temperature", value=37.2, unit="Cel"),
        make_obs("P999", value=80),
    ]
    bundle = build_bundle(patients, observations)

    assert bundle["resourceType"] == "Bundle"
    assert bundle["type"] == "transaction"
    entries = bundle["entry"]
    assert len(entries) == 4
    assert [e["resource"]["resourceType"] for e in entries] == [
        "Patient",
        "Patient",
        "Observation",
        "Observation",
    ]
    assert all(e["fullUrl"].startswith("urn:uuid:") for e in entries)
    assert len({e["fullUrl"] for e in entries}) == 4

    p1_url, p2_url = entries[0]["fullUrl"], entries[1]["fullUrl"]
    assert entries[2]["resource"]["subject"]["reference"] == p1_url
    assert entries[3]["resource"]["subject"]["reference"] == p2_url

    assert entries[0]["request"] == {
        "method": "POST",
        "url": "Patient",
        "ifNoneExist": f"identifier={PATIENT_IDENTIFIER_SYSTEM}|P001",
    }
    assert entries[2]["request"]["url"] == "Observation"
    assert (
        entries[2]["request"]["ifNoneExist"]
        == f"identifier={OBSERVATION_IDENTIFIER_SYSTEM}|P001:heart_rate:2024-01-15:72"
    )


def test_bundle_conditions_stable_across_builds_but_urls_are_not():
    patients = [make_patient()]
    observations = [make_obs()]
    first = build_bundle(patients, observations)
    second = build_bundle(patients, observations)
    assert [e["request"] for e in first["entry"]] == [e["request"] for e in second["entry"]]
    assert first["entry"][0]["fullUrl"] != second["entry"][0]["fullUrl"]


def test_bundle_condition_value_is_url_encoded():
    bundle = build_bundle([make_patient("A B")], [make_obs("A B", obs_type="blood_type", value="A+")])
    assert bundle["entry"][0]["request"]["ifNoneExist"].endswith("|A%20B")
    assert bundle["entry"][1]["request"]["ifNoneExist"].endswith("|A%20B:blood_type:2024-01-15:A%2B")
    # el identificador del recurso conserva el valor original
    assert bundle["entry"][0]["resource"]["identifier"][0]["value"] == "A B"


def test_bundle_empty_input():
    assert build_bundle([], []) == {"resourceType": "Bundle", "type": "transaction", "entry": []}


def test_engine_parse_and_map_tabular(engine):
    csv_text = (
        "patient_id,first_name,last_name,birth_date,gender,observation_type,observation_value,observation_unit,observation_date\n"
        "P001,John,Doe,1990-01-15,M,heart_rate,72,bpm,\n"
    )
    parsed, bundle = engine.parse_and_map("tabular", csv_text)
    assert len(parsed.patients) == 1
    obs = bundle["entry"][1]["resource"]
    # fecha de procesamiento fijada por el reloj del engine
    assert obs["effectiveDateTime"] == "2024-03-01"


def test_engine_rejects_unknown_format():
    with pytest.raises(ValueError):
        HarmonizationEngine().parse("passthrough", "{}")


def test_bundle_condition_escapes_search_separators():
    bundle = build_bundle(
        [make_patient("A|B")],
        [make_obs("A|B", obs_type="X9", value="Positive, trace"), make_obs("A|B", obs_type="X9", value="5$\\")],
    )
    patient_cond, obs_cond, other_cond = (e["request"]["ifNoneExist"] for e in bundle["entry"])
    assert patient_cond == f"identifier={PATIENT_IDENTIFIER_SYSTEM}|A%5C%7CB"
    assert unquote(obs_cond) == f"identifier={OBSERVATION_IDENTIFIER_SYSTEM}|A\\|B:X9:2024-01-15:Positive\\, trace"
    assert unquote(other_cond).endswith(":5\\$\\\\")
    # el identificador del recurso no lleva escapes
    assert bundle["entry"][1]["resource"]["identifier"][0]["value"] == "A|B:X9:2024-01-15:Positive, trace"


def test_engine_shared_patient_rows_point_to_one_entry(engine):
    csv_text = (
        "patient_id,first_name,last_name,birth_date,gender,observation_type,observation_value,observation_unit,observation_date\n"
        "P001,John,Doe,1990-01-15,M,heart_rate,72,bpm,2024-01-15\n"
        "P001,John,Doe,1990-01-15,M,heart_rate,75,bpm,2024-01-16\n"
    )
    _, bundle = engine.parse_and_map("tabular", csv_text)
    patient, first, second = bundle["entry"]
    assert patient["resource"]["resourceType"] == "Patient"
    assert first["resource"]["subject"]["reference"] == patient["fullUrl"]
    assert second["resource"]["subject"]["reference"] == patient["fullUrl"]


def test_engine_coded_and_free_text_results(engine):
    hl7_text = (
        "MSH|^~\\&|LAB|HOSP|EHR|HOSP|20240115103000||ORU^R01|MSG001|P|2.5\n"
        "PID|1||P001^^^HOSP^MR||Doe^John||19900115|M\n"
        "OBX|1|NM|8867-4^Heart rate^LN||72|bpm\n"
        "OBX|2|ST|X9^Custom^L||positive\n"
    )
    _, bundle = engine.parse_and_map("segmented", hl7_text)
    _, heart_rate, custom = (e["resource"] for e in bundle["entry"])
    assert heart_rate["code"]["coding"] == [
        {"system": "http://loinc.org", "code": "8867-4", "display": "Heart rate"}
    ]
    assert heart_rate["valueQuantity"]["value"] == 72
    assert custom["code"] == {"text": "X9"}
    assert custom["valueString"] == "positive"
