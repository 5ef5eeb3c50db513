from datetime import datetime, timezone

import pytest

from fhirmap.constants import (
    ENCOUNTER_EXTENSION_URI,
    HAS_MEMBER,
    INTERNAL_SYSTEM_URI,
    LOCATION_EXTENSION_URI,
    REPLACES,
)
from fhirmap.errors import ErrorCollector
from fhirmap.model import (
    Interpretation,
    NumericValue,
    Observation,
    ObservationArena,
    ObsStatus,
    TextValue,
)
from fhirmap.observations import (
    copy_observation_attributes,
    encounter_reference,
    observation_from_fhir,
    observation_to_fhir,
)
from fhirmap.values import NO_MATCHING_CONCEPT

from conftest import LOCATION_UUID, LOINC, NURSE_UUID, PATIENT_UUID, PROVIDER_UUID


@pytest.fixture
def weight_obs(concepts, patient, encounter, location):
    obs = Observation(
        uuid="0f9b8c5a-1b4e-4a93-9d43-6a4c0b2fe7b1",
        person=patient,
        concept=concepts["weight"],
        obs_datetime=datetime(2024, 3, 1, 9, 45),
        value=NumericValue(72.0),
        status=ObsStatus.FINAL,
        interpretation=Interpretation.NORMAL,
        comment="after breakfast",
        location=location,
        encounter=encounter,
    )
    encounter.observations.append(obs)
    return obs


def _weight_resource(**overrides):
    resource = {
        "resourceType": "Observation",
        "id": "obs-import-1",
        "status": "final",
        "subject": {"reference": f"Patient/{PATIENT_UUID}"},
        "effectiveDateTime": "2024-03-01T09:45:00",
        "code": {"coding": [{"system": LOINC, "code": "29463-7"}]},
        "valueQuantity": {"value": 72, "unit": "kg"},
    }
    resource.update(overrides)
    return resource


def test_export_core_fields(ctx, weight_obs):
    resource = observation_to_fhir(weight_obs, ctx)
    assert resource["resourceType"] == "Observation"
    assert resource["id"] == weight_obs.uuid
    assert resource["status"] == "final"
    assert resource["subject"] == {
        "reference": f"Patient/{PATIENT_UUID}",
        "display": "Jane Doe(Identifier:100-8)",
    }
    assert resource["effectiveDateTime"] == "2024-03-01T09:45:00"
    assert resource["issued"] == "2024-03-01T09:45:00"
    assert resource["code"]["coding"][-1]["system"] == INTERNAL_SYSTEM_URI
    assert resource["valueQuantity"]["value"] == 72.0
    assert resource["interpretation"] == {"text": "NORMAL"}
    assert resource["comment"] == "after breakfast"


def test_export_performers_are_distinct_encounter_providers(ctx, weight_obs):
    performers = observation_to_fhir(weight_obs, ctx)["performer"]
    assert [p["reference"] for p in performers] == [
        f"Practitioner/{PROVIDER_UUID}",
        f"Practitioner/{NURSE_UUID}",
    ]
    assert performers[0]["display"] == "Dr House(Identifier:PRV-1)"


def test_export_extensions(ctx, weight_obs, encounter):
    extensions = observation_to_fhir(weight_obs, ctx)["extension"]
    assert extensions[0]["url"] == LOCATION_EXTENSION_URI
    assert extensions[0]["valueReference"]["reference"] == f"Location/{LOCATION_UUID}"
    assert extensions[1] == {
        "url": ENCOUNTER_EXTENSION_URI,
        "valueReference": encounter_reference(encounter),
    }


def test_export_defaults_status_and_omits_missing_parts(ctx, concepts):
    obs = Observation(uuid="bare", concept=concepts["note"], value=TextValue("x"))
    resource = observation_to_fhir(obs, ctx)
    assert resource["status"] == "final"
    for key in ("subject", "performer", "extension", "related", "issued"):
        assert key not in resource


def test_export_related_members_and_previous_version(ctx, concepts):
    group = Observation(uuid="group", concept=concepts["note"], value=TextValue("set"),
                        previous_version_uuid="group-v1")
    member = Observation(uuid="member", concept=concepts["weight"], value=NumericValue(1),
                         group_uuid="group")
    arena = ObservationArena([group, member])
    related = observation_to_fhir(group, ctx, arena)["related"]
    assert related[0]["type"] == HAS_MEMBER
    assert related[0]["target"]["reference"] == "Observation/member"
    assert related[0]["target"]["display"] == "Weight (kg)"
    assert related[1]["type"] == REPLACES
    assert related[1]["target"]["reference"] == "Observation/group-v1"


def test_import_resolves_everything(ctx, concepts, patient):
    result = observation_from_fhir(_weight_resource(issued="2024-03-01T10:00:00"), ctx)
    obs = result.entity
    assert result.ok
    assert obs.uuid == "obs-import-1"
    assert obs.person is patient
    assert obs.concept is concepts["weight"]
    assert obs.value == NumericValue(72.0)
    assert obs.obs_datetime == datetime(2024, 3, 1, 9, 45)
    assert obs.date_created == datetime(2024, 3, 1, 10, 0)
    assert obs.status is ObsStatus.FINAL
    assert result.decimal_updates == []


def test_import_without_issued_stamps_now(ctx):
    before = datetime.now(timezone.utc)
    obs = observation_from_fhir(_weight_resource(), ctx).entity
    assert obs.date_created >= before


def test_import_unknown_subject(ctx):
    missing = "00000000-0000-4000-8000-000000000000"
    result = observation_from_fhir(
        _weight_resource(subject={"reference": f"Patient/{missing}"}), ctx
    )
    assert result.entity.person is None
    assert any(missing in message for message in result.errors)


def test_import_missing_subject_and_date(ctx):
    resource = _weight_resource()
    del resource["subject"]
    del resource["effectiveDateTime"]
    result = observation_from_fhir(resource, ctx)
    assert "Subject cannot be empty" in result.errors
    assert "Observation DateTime cannot be empty" in result.errors


def test_import_effective_period_start(ctx):
    resource = _weight_resource(effectivePeriod={"start": "2024-01-01T00:00Z"})
    del resource["effectiveDateTime"]
    obs = observation_from_fhir(resource, ctx).entity
    assert obs.obs_datetime == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_import_unknown_coding_reports_once(ctx, patient):
    resource = _weight_resource(code={"coding": [{"system": "http://unknown.org", "code": "X"}]})
    del resource["effectiveDateTime"]
    resource["effectivePeriod"] = {"start": "2024-01-01T00:00Z"}
    result = observation_from_fhir(resource, ctx)
    assert result.entity.concept is None
    assert result.entity.person is patient
    assert result.errors.count(NO_MATCHING_CONCEPT) == 1
    assert result.errors == [NO_MATCHING_CONCEPT]


def test_import_missing_code(ctx):
    result = observation_from_fhir(_weight_resource(code={}), ctx)
    assert result.errors == ["Code cannot be empty"]
    assert result.entity.value is None


def test_import_fractional_value_reports_decimal_update(ctx, concepts):
    result = observation_from_fhir(_weight_resource(valueQuantity={"value": 72.4}), ctx)
    assert result.decimal_updates == [concepts["weight"]]
    assert concepts["weight"].allow_decimal is False
    assert result.ok


def test_import_extensions(ctx, encounter, location):
    extensions = [
        {"url": LOCATION_EXTENSION_URI, "valueReference": {"reference": f"Location/{LOCATION_UUID}"}},
        {"url": ENCOUNTER_EXTENSION_URI, "valueReference": encounter_reference(encounter)},
    ]
    result = observation_from_fhir(_weight_resource(extension=extensions), ctx)
    assert result.entity.location is location
    assert result.entity.encounter is encounter
    assert result.ok


def test_import_unknown_extension_targets(ctx):
    extensions = [
        {"url": LOCATION_EXTENSION_URI, "valueReference": {"reference": "Location/nowhere"}},
        {"url": ENCOUNTER_EXTENSION_URI, "valueReference": {"reference": "Encounter/none"}},
    ]
    result = observation_from_fhir(_weight_resource(extension=extensions), ctx)
    assert result.errors == [
        "Tried to parse location; location ID does not exist",
        "Tried to parse encounter; Encounter ID does not exist",
    ]


def test_import_status_and_interpretation(ctx):
    resource = _weight_resource(status="amended", interpretation={"text": "high"})
    obs = observation_from_fhir(resource, ctx).entity
    assert obs.status is ObsStatus.AMENDED
    assert obs.interpretation is Interpretation.HIGH


def test_import_unknown_status_is_soft_error(ctx):
    result = observation_from_fhir(_weight_resource(status="cancelled"), ctx)
    assert result.errors == ["Unknown observation status cancelled"]
    assert result.entity.status is None


def test_import_ignores_status_when_unsupported(ctx):
    ctx.status_supported = False
    resource = _weight_resource(status="cancelled", interpretation={"text": "high"})
    result = observation_from_fhir(resource, ctx)
    assert result.ok
    assert result.entity.status is None
    assert result.entity.interpretation is None


def test_import_previous_version(ctx):
    related = [{"type": REPLACES, "target": {"reference": "Observation/old-uuid"}}]
    obs = observation_from_fhir(_weight_resource(related=related), ctx).entity
    assert obs.previous_version_uuid == "old-uuid"


def test_import_attaches_given_encounter(ctx, encounter):
    obs = observation_from_fhir(_weight_resource(), ctx, encounter=encounter).entity
    assert obs.encounter is encounter


def test_export_then_import_keeps_identity(ctx, weight_obs):
    imported = observation_from_fhir(observation_to_fhir(weight_obs, ctx), ctx)
    assert imported.ok
    obs = imported.entity
    assert obs == weight_obs
    assert obs.concept is weight_obs.concept
    assert obs.value == weight_obs.value
    assert obs.location is weight_obs.location
    assert obs.encounter is weight_obs.encounter


def test_copy_attributes(concepts, patient):
    source = Observation(uuid="new", person=patient, concept=concepts["note"],
                         value=TextValue("ok"), comment="c",
                         obs_datetime=datetime(2024, 1, 1))
    target = Observation(uuid="stored")
    errors = ErrorCollector()
    copied = copy_observation_attributes(source, target, errors)
    assert copied is target
    assert target.uuid == "stored"
    assert (target.person, target.concept, target.value, target.comment) == (
        patient, concepts["note"], TextValue("ok"), "c",
    )
    assert not errors


def test_copy_attributes_rejects_mismatched_value(concepts):
    source = Observation(uuid="new", concept=concepts["note"], value=NumericValue(1))
    target = Observation(uuid="stored", value=TextValue("keep"))
    errors = ErrorCollector()
    copy_observation_attributes(source, target, errors)
    assert target.value == TextValue("keep")
    assert len(errors) == 1
    assert errors.messages[0].startswith("Couldn't copy value to the Observation")


def test_import_subject_reference_without_uuid(ctx):
    result = observation_from_fhir(_weight_resource(subject={"reference": "Patient/"}), ctx)
    assert result.entity.person is None
    assert result.errors == ["There is no person for the given uuid "]
