"""In-memory implementation of every lookup the mappers need."""

from __future__ import annotations

import json
import os
from typing import Dict, Iterable, List, Optional

import structlog
import yaml
from pydantic import BaseModel, ValidationError, field_validator

from ..exceptions import RepositoryError
from ..model import (
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

logger = structlog.get_logger(__name__)


class FixedLocale:
    """Locale provider returning a constant locale."""

    def __init__(self, locale: str = "en") -> None:
        self.locale = locale

    def get_locale(self) -> str:
        return self.locale


def _normalize_system(system: str) -> str:
    return system.rstrip("/").lower()


class InMemoryRepository:
    """Dictionary of persons, providers, concepts and types keyed by UUID."""

    def __init__(
        self,
        persons: Iterable[Person] = (),
        providers: Iterable[Provider] = (),
        locations: Iterable[Location] = (),
        concepts: Iterable[Concept] = (),
        encounter_types: Iterable[EncounterType] = (),
        visit_types: Iterable[VisitType] = (),
        encounter_roles: Iterable[EncounterRole] = (),
        encounters: Iterable[Encounter] = (),
    ) -> None:
        self.persons = {p.uuid: p for p in persons}
        self.providers = {p.uuid: p for p in providers}
        self.locations = {loc.uuid: loc for loc in locations}
        self.concepts = {c.uuid: c for c in concepts}
        self.encounter_types = {t.uuid: t for t in encounter_types}
        self.visit_types = {t.uuid: t for t in visit_types}
        self.encounter_roles = {r.uuid: r for r in encounter_roles}
        self.encounters = {e.uuid: e for e in encounters}

    def add_encounter(self, encounter: Encounter) -> None:
        self.encounters[encounter.uuid] = encounter

    def get_person_by_uuid(self, uuid: str) -> Optional[Person]:
        return self.persons.get(uuid)

    def get_provider_by_uuid(self, uuid: str) -> Optional[Provider]:
        return self.providers.get(uuid)

    def get_location_by_uuid(self, uuid: str) -> Optional[Location]:
        return self.locations.get(uuid)

    def get_concept_by_uuid(self, uuid: str) -> Optional[Concept]:
        return self.concepts.get(uuid)

    def get_concept_by_mapping(self, code: str, system: str) -> Optional[Concept]:
        wanted = _normalize_system(system)
        for concept in self.concepts.values():
            for mapping in concept.mappings:
                if mapping.code == code and _normalize_system(mapping.system) == wanted:
                    return concept
        return None

    def get_encounter_by_uuid(self, uuid: str) -> Optional[Encounter]:
        return self.encounters.get(uuid)

    def get_encounter_type_by_name(self, name: str) -> Optional[EncounterType]:
        for encounter_type in self.encounter_types.values():
            if encounter_type.name == name:
                return encounter_type
        return None

    def get_encounter_type_by_uuid(self, uuid: str) -> Optional[EncounterType]:
        return self.encounter_types.get(uuid)

    def get_visit_type_by_uuid(self, uuid: str) -> Optional[VisitType]:
        return self.visit_types.get(uuid)

    def get_encounter_role_by_uuid(self, uuid: str) -> Optional[EncounterRole]:
        return self.encounter_roles.get(uuid)


class _NamedModel(BaseModel):
    uuid: str
    name: str = ""

    @field_validator("uuid")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("uuid must not be empty")
        return value.strip()


class PersonModel(BaseModel):
    uuid: str
    given_name: str = ""
    family_name: str = ""
    identifier: Optional[str] = None


class ProviderModel(_NamedModel):
    identifier: Optional[str] = None


class MappingModel(BaseModel):
    system: str
    code: str
    display: Optional[str] = None


class ConceptModel(_NamedModel):
    datatype: Datatype
    mappings: List[MappingModel] = []
    names: Dict[str, str] = {}
    units: Optional[str] = None
    hi_absolute: Optional[float] = None
    low_absolute: Optional[float] = None
    allow_decimal: bool = False


class DictionaryModel(BaseModel):
    """Validation model for dictionary files."""

    persons: List[PersonModel] = []
    providers: List[ProviderModel] = []
    locations: List[_NamedModel] = []
    concepts: List[ConceptModel] = []
    encounter_types: List[_NamedModel] = []
    visit_types: List[_NamedModel] = []
    encounter_roles: List[_NamedModel] = []


def load_repository(path: str) -> InMemoryRepository:
    """Load an :class:`InMemoryRepository` from a JSON or YAML file.

    Raises
    ------
    RepositoryError
        If the file cannot be parsed or does not match the dictionary
        layout.
    """

    with open(path, "r", encoding="utf-8") as fh:
        try:
            if os.path.splitext(path)[1].lower() == ".json":
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh) or {}
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise RepositoryError(f"Cannot parse dictionary {path}: {exc}") from exc
    try:
        model = DictionaryModel.model_validate(data)
    except ValidationError as exc:
        raise RepositoryError(f"Invalid dictionary {path}: {exc}") from exc

    repository = InMemoryRepository(
        persons=[Person(**p.model_dump()) for p in model.persons],
        providers=[Provider(**p.model_dump()) for p in model.providers],
        locations=[Location(**loc.model_dump()) for loc in model.locations],
        concepts=[
            Concept(
                uuid=c.uuid,
                name=c.name,
                datatype=c.datatype,
                mappings=[ConceptMapping(**m.model_dump()) for m in c.mappings],
                names=dict(c.names),
                units=c.units,
                hi_absolute=c.hi_absolute,
                low_absolute=c.low_absolute,
                allow_decimal=c.allow_decimal,
            )
            for c in model.concepts
        ],
        encounter_types=[EncounterType(**t.model_dump()) for t in model.encounter_types],
        visit_types=[VisitType(**t.model_dump()) for t in model.visit_types],
        encounter_roles=[EncounterRole(**r.model_dump()) for r in model.encounter_roles],
    )
    logger.info(
        "dictionary_loaded",
        path=path,
        concepts=len(repository.concepts),
        persons=len(repository.persons),
    )
    return repository
