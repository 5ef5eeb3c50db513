"""Domain model for clinical records exchanged with FHIR resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import ClassVar, Dict, Iterable, Iterator, List, Optional, Union

from .exceptions import ObservationGraphError


class Datatype(Enum):
    """Concept value datatypes keyed by their HL7 abbreviation."""

    NUMERIC = "NM"
    CODED = "CWE"
    STRING = "ST"
    BOOLEAN = "BIT"
    DATETIME = "TS"
    DATE = "DT"
    COMPLEX = "ED"


class ObsStatus(Enum):
    PRELIMINARY = "preliminary"
    FINAL = "final"
    AMENDED = "amended"


class Interpretation(Enum):
    NORMAL = "normal"
    ABNORMAL = "abnormal"
    CRITICALLY_ABNORMAL = "critically_abnormal"
    NEGATIVE = "negative"
    POSITIVE = "positive"
    CRITICALLY_LOW = "critically_low"
    LOW = "low"
    CRITICALLY_HIGH = "critically_high"
    HIGH = "high"
    VERY_SUSCEPTIBLE = "very_susceptible"
    SUSCEPTIBLE = "susceptible"
    INTERMEDIATE = "intermediate"
    RESISTANT = "resistant"
    SIGNIFICANT_CHANGE_DOWN = "significant_change_down"
    SIGNIFICANT_CHANGE_UP = "significant_change_up"
    OFF_SCALE_LOW = "off_scale_low"
    OFF_SCALE_HIGH = "off_scale_high"


@dataclass(eq=False)
class Entity:
    """Base class for records identified by a UUID.

    Two entities are equal when they have the same concrete type and
    ``uuid``, mirroring how the host system compares persisted objects.
    """

    uuid: str

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.uuid == other.uuid  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.uuid))


@dataclass
class ConceptMapping:
    """Code for a concept in an external terminology."""

    system: str
    code: str
    display: Optional[str] = None


@dataclass(eq=False)
class Concept(Entity):
    """Coded clinical term with a value datatype and external mappings."""

    name: str = ""
    datatype: Datatype = Datatype.STRING
    mappings: List[ConceptMapping] = field(default_factory=list)
    names: Dict[str, str] = field(default_factory=dict)
    units: Optional[str] = None
    hi_absolute: Optional[float] = None
    low_absolute: Optional[float] = None
    allow_decimal: bool = False

    @property
    def numeric(self) -> bool:
        return self.datatype is Datatype.NUMERIC

    def localized_name(self, locale: Optional[str] = None) -> str:
        """Return the concept name for ``locale`` falling back to ``name``."""

        if locale:
            if locale in self.names:
                return self.names[locale]
            language = locale.replace("-", "_").split("_")[0]
            if language in self.names:
                return self.names[language]
        return self.name


@dataclass(eq=False)
class Person(Entity):
    given_name: str = ""
    family_name: str = ""
    identifier: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.given_name} {self.family_name}".strip()


@dataclass(eq=False)
class Provider(Entity):
    name: str = ""
    identifier: Optional[str] = None


@dataclass(eq=False)
class EncounterRole(Entity):
    name: str = ""


@dataclass(frozen=True)
class EncounterProvider:
    """A provider participating in an encounter under a role."""

    provider: Provider
    role: Optional[EncounterRole] = None


@dataclass(eq=False)
class Location(Entity):
    name: str = ""


@dataclass(eq=False)
class EncounterType(Entity):
    name: str = ""


@dataclass(eq=False)
class VisitType(Entity):
    name: str = ""


@dataclass(eq=False)
class Form(Entity):
    name: str = ""


@dataclass(eq=False)
class Order(Entity):
    pass


@dataclass(eq=False)
class Visit(Entity):
    patient: Optional[Person] = None
    visit_type: Optional[VisitType] = None
    start_datetime: Optional[datetime] = None
    stop_datetime: Optional[datetime] = None


# Typed observation values. Exactly one value is attached to an observation
# and its ``datatype`` must equal the concept datatype.


@dataclass(frozen=True)
class NumericValue:
    datatype: ClassVar[Datatype] = Datatype.NUMERIC
    value: float


@dataclass(frozen=True)
class CodedValue:
    datatype: ClassVar[Datatype] = Datatype.CODED
    concept: Concept


@dataclass(frozen=True)
class TextValue:
    datatype: ClassVar[Datatype] = Datatype.STRING
    text: str


@dataclass(frozen=True)
class BooleanValue:
    datatype: ClassVar[Datatype] = Datatype.BOOLEAN
    value: bool


@dataclass(frozen=True)
class DateValue:
    datatype: ClassVar[Datatype] = Datatype.DATE
    value: date


@dataclass(frozen=True)
class DateTimeValue:
    datatype: ClassVar[Datatype] = Datatype.DATETIME
    value: datetime


@dataclass(frozen=True)
class ComplexValue:
    datatype: ClassVar[Datatype] = Datatype.COMPLEX
    path: str


ObsValue = Union[
    NumericValue,
    CodedValue,
    TextValue,
    BooleanValue,
    DateValue,
    DateTimeValue,
    ComplexValue,
]


@dataclass(eq=False)
class Observation(Entity):
    """A single recorded clinical measurement or finding.

    Group membership and the version chain are stored as parent pointers
    (``group_uuid`` and ``previous_version_uuid``) and resolved through an
    :class:`ObservationArena`.
    """

    person: Optional[Person] = None
    concept: Optional[Concept] = None
    obs_datetime: Optional[datetime] = None
    value: Optional[ObsValue] = None
    date_created: Optional[datetime] = None
    status: Optional[ObsStatus] = None
    interpretation: Optional[Interpretation] = None
    comment: Optional[str] = None
    location: Optional[Location] = None
    encounter: Optional["Encounter"] = field(default=None, repr=False)
    order: Optional[Order] = None
    accession_number: Optional[str] = None
    group_uuid: Optional[str] = None
    previous_version_uuid: Optional[str] = None
    voided: bool = False

    def value_matches_concept(self) -> bool:
        """Return ``True`` when the value kind agrees with the concept."""

        if self.value is None or self.concept is None:
            return True
        return self.value.datatype is self.concept.datatype


@dataclass(eq=False)
class Encounter(Entity):
    """A clinical visit or interaction with participants and observations."""

    encounter_datetime: Optional[datetime] = None
    encounter_type: Optional[EncounterType] = None
    location: Optional[Location] = None
    patient: Optional[Person] = None
    providers: List[EncounterProvider] = field(default_factory=list)
    observations: List[Observation] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)
    visit: Optional[Visit] = None
    form: Optional[Form] = None
    voided: bool = False
    date_created: Optional[datetime] = None
    date_changed: Optional[datetime] = None

    def add_provider(self, role: Optional[EncounterRole], provider: Provider) -> None:
        """Attach ``provider`` under ``role`` unless already present."""

        participant = EncounterProvider(provider=provider, role=role)
        if participant not in self.providers:
            self.providers.append(participant)

    def provider_list(self) -> List[Provider]:
        """Return distinct providers in participant order."""

        seen: List[Provider] = []
        for participant in self.providers:
            if participant.provider not in seen:
                seen.append(participant.provider)
        return seen

    def active_observations(self) -> List[Observation]:
        return [obs for obs in self.observations if not obs.voided]


class ObservationArena:
    """Observations addressed by UUID with group and version relations."""

    def __init__(self, observations: Iterable[Observation] = ()) -> None:
        self._items: Dict[str, Observation] = {}
        for obs in observations:
            self.add(obs)

    @classmethod
    def from_encounter(cls, encounter: Encounter) -> "ObservationArena":
        return cls(encounter.observations)

    def add(self, obs: Observation) -> None:
        if obs.uuid in self._items:
            raise ValueError(f"Observation {obs.uuid} already in arena")
        self._items[obs.uuid] = obs

    def get(self, uuid: str) -> Optional[Observation]:
        return self._items.get(uuid)

    def __contains__(self, uuid: object) -> bool:
        return uuid in self._items

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def members(self, uuid: str) -> List[Observation]:
        """Return the group members of ``uuid`` in insertion order."""

        return [obs for obs in self._items.values() if obs.group_uuid == uuid]

    def previous_version(self, uuid: str) -> Optional[Observation]:
        obs = self._items.get(uuid)
        if obs is None or obs.previous_version_uuid is None:
            return None
        return self._items.get(obs.previous_version_uuid)

    def _walk(self, uuid: str, attr: str) -> List[str]:
        chain: List[str] = []
        seen = {uuid}
        current = self._items.get(uuid)
        while current is not None:
            parent = getattr(current, attr)
            if parent is None:
                break
            if parent in seen:
                raise ObservationGraphError(
                    f"Cycle through observation {parent} via {attr}"
                )
            seen.add(parent)
            chain.append(parent)
            current = self._items.get(parent)
        return chain

    def ancestors(self, uuid: str) -> List[str]:
        """Return the UUIDs of enclosing groups, nearest first."""

        return self._walk(uuid, "group_uuid")

    def version_chain(self, uuid: str) -> List[str]:
        """Return the UUIDs of earlier versions, newest first."""

        return self._walk(uuid, "previous_version_uuid")

    def check_acyclic(self) -> None:
        """Raise :class:`ObservationGraphError` if any relation has a cycle."""

        for uuid in self._items:
            self.ancestors(uuid)
            self.version_chain(uuid)
