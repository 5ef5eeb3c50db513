from datetime import datetime

import pytest

from fhirmap.constants import DEFAULT_ENCOUNTER_ROLE_UUID
from fhirmap.context import AllergyPolicy, MappingContext
from fhirmap.model import (
    Concept,
    ConceptMapping,
    Datatype,
    Encounter,
    EncounterRole,
    EncounterType,
    Location,
    Person,
    Provider,
    VisitType,
)
from fhirmap.services import FileSystemComplexDataStore, FixedLocale, InMemoryRepository

PATIENT_UUID = "5946f880-b197-400b-9caa-a3c661d23041"
PROVIDER_UUID = "f9badd80-ab76-11e2-9e96-0800200c9a66"
NURSE_UUID = "3f0d6d4e-2d2f-4a5c-9c4b-8b2c6f1d2a11"
LOCATION_UUID = "8d6c993e-c2cc-11de-8d13-0010c6dffd0f"
ALLERGY_UUID = "a1a1a1a1-0000-4000-8000-000000000001"
LOINC = "http://loinc.org"
SNOMED = "http://snomed.info/sct"


@pytest.fixture
def concepts():
    yes = Concept(uuid="1065AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", name="Yes",
                  datatype=Datatype.STRING, names={"fr": "Oui"},
                  mappings=[ConceptMapping(SNOMED, "373066001", "Yes")])
    return {
        "weight": Concept(
            uuid="5089AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA",
            name="Weight (kg)",
            datatype=Datatype.NUMERIC,
            mappings=[ConceptMapping(LOINC, "29463-7", "Body weight")],
            units="kg",
            hi_absolute=250.0,
            low_absolute=0.0,
            allow_decimal=False,
        ),
        "diagnosis": Concept(uuid="1284AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", name="Diagnosis", datatype=Datatype.CODED),
        "yes": yes,
        "note": Concept(uuid="162169AAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", name="Clinical note", datatype=Datatype.STRING),
        "pregnant": Concept(uuid="5272AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", name="Pregnant", datatype=Datatype.BOOLEAN),
        "seen_at": Concept(uuid="163137AAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", name="Seen at", datatype=Datatype.DATETIME),
        "lmp": Concept(uuid="1427AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", name="Last menstrual period", datatype=Datatype.DATE),
        "xray": Concept(uuid="12AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", name="Chest x-ray", datatype=Datatype.COMPLEX),
        "allergy": Concept(uuid=ALLERGY_UUID, name="Allergy", datatype=Datatype.STRING),
    }


@pytest.fixture
def patient():
    return Person(uuid=PATIENT_UUID, given_name="Jane", family_name="Doe", identifier="100-8")


@pytest.fixture
def providers():
    return [
        Provider(uuid=PROVIDER_UUID, name="Dr House", identifier="PRV-1"),
        Provider(uuid=NURSE_UUID, name="Nurse Joy", identifier="PRV-2"),
    ]


@pytest.fixture
def location():
    return Location(uuid=LOCATION_UUID, name="Outpatient Clinic")


@pytest.fixture
def role():
    return EncounterRole(uuid=DEFAULT_ENCOUNTER_ROLE_UUID, name="Unknown")


@pytest.fixture
def encounter_type():
    return EncounterType(uuid="67a71486-1a54-468f-ac3e-7091a9a79584", name="Vitals")


@pytest.fixture
def repository(concepts, patient, providers, location, role, encounter_type):
    return InMemoryRepository(
        persons=[patient],
        providers=providers,
        locations=[location],
        concepts=concepts.values(),
        encounter_types=[encounter_type],
        visit_types=[VisitType(uuid="7b0f5697-27e3-40c4-8bae-f4049abfb4ed", name="Facility Visit")],
        encounter_roles=[role],
    )


@pytest.fixture
def ctx(repository, tmp_path):
    return MappingContext(
        persons=repository,
        providers=repository,
        locations=repository,
        concepts=repository,
        encounters=repository,
        encounter_types=repository,
        visit_types=repository,
        encounter_roles=repository,
        locale=FixedLocale("en"),
        complex_store=FileSystemComplexDataStore(str(tmp_path / "data")),
        allergy_policy=AllergyPolicy(enabled=True, concept_uuid=ALLERGY_UUID),
        complex_data_url="http://localhost/complex?uuid=",
    )


@pytest.fixture
def encounter(patient, providers, location, role, encounter_type, repository):
    enc = Encounter(
        uuid="e403fafb-e5e4-42d0-9d11-4f52e89d148c",
        encounter_datetime=datetime(2024, 3, 1, 9, 30),
        encounter_type=encounter_type,
        location=location,
        patient=patient,
    )
    for provider in providers:
        enc.add_provider(role, provider)
    repository.add_encounter(enc)
    return enc
