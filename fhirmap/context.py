"""Collaborator interfaces injected into the mappers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol

from PIL import Image

from .constants import DEFAULT_COMPLEX_DATA_URL, DEFAULT_ENCOUNTER_ROLE_UUID
from .model import (
    Concept,
    Encounter,
    EncounterRole,
    EncounterType,
    Location,
    Observation,
    Person,
    Provider,
    VisitType,
)

if TYPE_CHECKING:  # pragma: no cover
    from .config import Settings


class PersonLookup(Protocol):
    def get_person_by_uuid(self, uuid: str) -> Optional[Person]:
        ...


class ProviderLookup(Protocol):
    def get_provider_by_uuid(self, uuid: str) -> Optional[Provider]:
        ...


class LocationLookup(Protocol):
    def get_location_by_uuid(self, uuid: str) -> Optional[Location]:
        ...


class ConceptLookup(Protocol):
    def get_concept_by_uuid(self, uuid: str) -> Optional[Concept]:
        ...

    def get_concept_by_mapping(self, code: str, system: str) -> Optional[Concept]:
        ...


class EncounterLookup(Protocol):
    def get_encounter_by_uuid(self, uuid: str) -> Optional[Encounter]:
        ...


class EncounterTypeLookup(Protocol):
    def get_encounter_type_by_name(self, name: str) -> Optional[EncounterType]:
        ...

    def get_encounter_type_by_uuid(self, uuid: str) -> Optional[EncounterType]:
        ...


class VisitTypeLookup(Protocol):
    def get_visit_type_by_uuid(self, uuid: str) -> Optional[VisitType]:
        ...


class EncounterRoleLookup(Protocol):
    def get_encounter_role_by_uuid(self, uuid: str) -> Optional[EncounterRole]:
        ...


class LocaleProvider(Protocol):
    def get_locale(self) -> str:
        ...


class ComplexDataStore(Protocol):
    """Durable storage for decoded complex data images."""

    def save(self, uuid: str, image: Image.Image) -> str:
        ...

    def load(self, path: str) -> Image.Image:
        ...


@dataclass(frozen=True)
class AllergyPolicy:
    """Whether allergy observations are excluded from encounter documents."""

    enabled: bool = False
    concept_uuid: Optional[str] = None

    def is_allergy(self, obs: Observation) -> bool:
        if not self.enabled or not self.concept_uuid or obs.concept is None:
            return False
        return obs.concept.uuid == self.concept_uuid


@dataclass
class MappingContext:
    """Collaborators and policy needed by a single conversion call.

    Each lookup capability is a separate attribute so tests can supply only
    what a conversion touches. A single repository object implementing all
    protocols may be passed for every attribute.
    """

    persons: PersonLookup
    providers: ProviderLookup
    locations: LocationLookup
    concepts: ConceptLookup
    encounters: EncounterLookup
    encounter_types: EncounterTypeLookup
    visit_types: VisitTypeLookup
    encounter_roles: EncounterRoleLookup
    locale: LocaleProvider
    complex_store: ComplexDataStore
    allergy_policy: AllergyPolicy = AllergyPolicy()
    complex_data_url: str = DEFAULT_COMPLEX_DATA_URL
    default_encounter_role_uuid: str = DEFAULT_ENCOUNTER_ROLE_UUID
    status_supported: bool = True

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        repository,
        complex_store: ComplexDataStore,
        locale: Optional[LocaleProvider] = None,
    ) -> "MappingContext":
        """Wire a context from ``settings`` and a full ``repository``."""

        from .services.repository import FixedLocale

        return cls(
            persons=repository,
            providers=repository,
            locations=repository,
            concepts=repository,
            encounters=repository,
            encounter_types=repository,
            visit_types=repository,
            encounter_roles=repository,
            locale=locale or FixedLocale(settings.locale),
            complex_store=complex_store,
            allergy_policy=settings.allergy_policy(),
            complex_data_url=settings.complex_data_url,
            default_encounter_role_uuid=settings.default_encounter_role_uuid,
            status_supported=settings.status_supported,
        )

    def default_encounter_role(self) -> Optional[EncounterRole]:
        return self.encounter_roles.get_encounter_role_by_uuid(
            self.default_encounter_role_uuid
        )
