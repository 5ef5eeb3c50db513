"""Field level comparison used to skip redundant writes."""

from __future__ import annotations

from typing import Callable, Dict, List, TypeVar

import structlog

from .model import Encounter, Observation

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Every field is evaluated; collections compare as ordered sequences of
# element identity and scalars by value.
_ENCOUNTER_FIELDS: Dict[str, Callable[[Encounter], object]] = {
    "observations": lambda e: list(e.observations),
    "orders": lambda e: list(e.orders),
    "providers": lambda e: list(e.providers),
    "voided": lambda e: e.voided,
    "encounter_datetime": lambda e: e.encounter_datetime,
    "date_created": lambda e: e.date_created,
    "encounter_type": lambda e: e.encounter_type,
    "location": lambda e: e.location,
    "patient": lambda e: e.patient,
    "form": lambda e: e.form,
    "visit": lambda e: e.visit,
}

_OBSERVATION_FIELDS: Dict[str, Callable[[Observation], object]] = {
    "accession_number": lambda o: o.accession_number,
    "comment": lambda o: o.comment,
    "concept": lambda o: o.concept,
    "location": lambda o: o.location,
    "encounter": lambda o: o.encounter,
    "value": lambda o: o.value,
    "obs_datetime": lambda o: o.obs_datetime,
    "order": lambda o: o.order,
    "person": lambda o: o.person,
    "status": lambda o: o.status,
    "voided": lambda o: o.voided,
}


def changed_fields(first: T, second: T) -> List[str]:
    """Return the names of the fields that differ between two records."""

    if isinstance(first, Encounter) and isinstance(second, Encounter):
        fields = _ENCOUNTER_FIELDS
    elif isinstance(first, Observation) and isinstance(second, Observation):
        fields = _OBSERVATION_FIELDS
    else:
        raise TypeError(
            f"Cannot compare {type(first).__name__} with {type(second).__name__}"
        )
    return [name for name, getter in fields.items() if getter(first) != getter(second)]


def encounters_equal(first: Encounter, second: Encounter) -> bool:
    """Return ``True`` when two encounters are materially equal."""

    changed = changed_fields(first, second)
    if changed:
        logger.debug("encounter_changed", encounter=first.uuid, fields=changed)
    return not changed


def observations_equal(first: Observation, second: Observation) -> bool:
    """Return ``True`` when two observations are materially equal."""

    changed = changed_fields(first, second)
    if changed:
        logger.debug("observation_changed", obs=first.uuid, fields=changed)
    return not changed
