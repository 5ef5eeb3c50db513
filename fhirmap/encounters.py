"""Conversion between :class:`Encounter` records and FHIR resources."""

from __future__ import annotations

import uuid as uuidlib
from typing import Any, Dict, List, Mapping, Optional

import structlog

from .constants import (
    COMPOSITION_STATUS,
    CONFIDENTIALITY_CODE,
    ENCOUNTER_STATUS,
    LOCATION_SECTION_TITLE,
    OBSERVATION_SECTION_TITLE,
)
from .context import AllergyPolicy, MappingContext
from .errors import ErrorCollector, ImportResult
from .model import Encounter, Observation, ObservationArena, Visit
from .observations import encounter_reference, observation_to_fhir
from .references import (
    ResourceType,
    build_reference,
    extract_uuid,
    person_display,
    provider_display,
    resolve,
)
from .values import format_fhir_datetime, parse_fhir_datetime

logger = structlog.get_logger(__name__)


def _subject(encounter: Encounter) -> Optional[Dict[str, str]]:
    if encounter.patient is None:
        return None
    return build_reference(
        ResourceType.PATIENT, encounter.patient.uuid, person_display(encounter.patient)
    )


def _period(encounter: Encounter) -> Optional[Dict[str, str]]:
    # Encounters are instants: the period starts and ends at the same time
    if encounter.encounter_datetime is None:
        return None
    instant = format_fhir_datetime(encounter.encounter_datetime)
    return {"start": instant, "end": instant}


def encounter_to_fhir(encounter: Encounter) -> Dict[str, Any]:
    """Convert ``encounter`` to a FHIR ``Encounter`` resource."""

    resource: Dict[str, Any] = {
        "resourceType": "Encounter",
        "id": encounter.uuid,
        "status": ENCOUNTER_STATUS,
    }

    subject = _subject(encounter)
    if subject is not None:
        resource["subject"] = subject

    participants = []
    for participant in encounter.providers:
        entry: Dict[str, Any] = {
            "individual": build_reference(
                ResourceType.PRACTITIONER,
                participant.provider.uuid,
                provider_display(participant.provider),
            )
        }
        if participant.role is not None:
            entry["type"] = [{"text": participant.role.name}]
        participants.append(entry)
    if participants:
        resource["participant"] = participants

    period = _period(encounter)
    if period is not None:
        resource["period"] = period

    if encounter.location is not None:
        location: Dict[str, Any] = {
            "location": build_reference(
                ResourceType.LOCATION, encounter.location.uuid, encounter.location.name
            )
        }
        if period is not None:
            location["period"] = dict(period)
        resource["location"] = [location]

    if encounter.visit is not None:
        display = encounter.visit.visit_type.name if encounter.visit.visit_type else None
        resource["partOf"] = build_reference(
            ResourceType.ENCOUNTER, encounter.visit.uuid, display
        )

    if encounter.encounter_type is not None:
        resource["type"] = [{"coding": [{"display": encounter.encounter_type.name}]}]
    return resource


def filter_observations(encounter: Encounter, policy: AllergyPolicy) -> List[Observation]:
    """Return the encounter observations that belong in its documents.

    Sites that record allergies as observations keep them out of encounter
    documents; they are returned with the patient instead.
    """

    kept = []
    for obs in encounter.active_observations():
        if policy.is_allergy(obs):
            logger.debug("allergy_observation_skipped", obs=obs.uuid, encounter=encounter.uuid)
            continue
        kept.append(obs)
    return kept


def encounter_to_composition(encounter: Encounter, ctx: MappingContext) -> Dict[str, Any]:
    """Return a FHIR ``Composition`` documenting ``encounter``."""

    composition: Dict[str, Any] = {
        "resourceType": "Composition",
        "id": encounter.uuid,
        "status": COMPOSITION_STATUS,
        "confidentiality": CONFIDENTIALITY_CODE,
        "encounter": encounter_reference(encounter),
    }
    if encounter.encounter_type is not None:
        composition["title"] = encounter.encounter_type.name
    if encounter.encounter_datetime is not None:
        composition["date"] = format_fhir_datetime(encounter.encounter_datetime)

    subject = _subject(encounter)
    if subject is not None:
        composition["subject"] = subject

    authors = [
        build_reference(ResourceType.PRACTITIONER, provider.uuid, provider_display(provider))
        for provider in encounter.provider_list()
    ]
    if authors:
        composition["author"] = authors

    sections = []
    if encounter.location is not None:
        sections.append(
            {
                "title": LOCATION_SECTION_TITLE,
                "entry": [
                    build_reference(
                        ResourceType.LOCATION,
                        encounter.location.uuid,
                        LOCATION_SECTION_TITLE,
                    )
                ],
            }
        )
    observations = filter_observations(encounter, ctx.allergy_policy)
    if observations:
        sections.append(
            {
                "title": OBSERVATION_SECTION_TITLE,
                "entry": [
                    build_reference(ResourceType.OBSERVATION, obs.uuid)
                    for obs in observations
                ],
            }
        )
    if sections:
        composition["section"] = sections
    return composition


def encounter_everything(encounter: Encounter, ctx: MappingContext) -> Dict[str, Any]:
    """Return a collection ``Bundle`` with the encounter and its contents."""

    arena = ObservationArena.from_encounter(encounter)
    entries = [
        {"resource": encounter_to_fhir(encounter)},
        {"resource": encounter_to_composition(encounter, ctx)},
    ]
    for obs in filter_observations(encounter, ctx.allergy_policy):
        entries.append({"resource": observation_to_fhir(obs, ctx, arena)})
    return {"resourceType": "Bundle", "type": "collection", "entry": entries}


def _first_mapping(items: Any) -> Optional[Mapping[str, Any]]:
    """Return the first element of a FHIR list field if it is an object."""

    if isinstance(items, list) and items and isinstance(items[0], Mapping):
        return items[0]
    return None


def _first_coding(resource: Mapping[str, Any]) -> Mapping[str, Any]:
    type_concept = _first_mapping(resource.get("type"))
    coding = _first_mapping(type_concept.get("coding")) if type_concept else None
    return coding or {}


def _patient(resource: Mapping[str, Any], ctx: MappingContext, errors: ErrorCollector):
    subject = resource.get("subject")
    if not subject:
        errors.add("Subject cannot be empty")
        return None
    return resolve(
        ctx.persons.get_person_by_uuid,
        extract_uuid(subject),
        errors,
        "There is no patient for the given uuid {uuid}",
    )


def encounter_from_fhir(
    resource: Mapping[str, Any], ctx: MappingContext
) -> ImportResult[Encounter]:
    """Build an :class:`Encounter` from a FHIR ``Encounter`` resource."""

    errors = ErrorCollector("Encounter")
    encounter = Encounter(uuid=str(resource.get("id") or uuidlib.uuid4()))
    encounter.patient = _patient(resource, ctx, errors)

    period = resource.get("period")
    start = period.get("start") if isinstance(period, Mapping) else None
    if not start:
        errors.add("Encounter period start cannot be empty")
    else:
        encounter.encounter_datetime = parse_fhir_datetime(start)
        if encounter.encounter_datetime is None:
            errors.add(f"Encounter period start {start!r} is not a valid date time")

    participants = resource.get("participant") or []
    if not isinstance(participants, list):
        errors.add("Encounter participants must be a list")
        participants = []
    role = None
    if participants:
        role = ctx.default_encounter_role()
        if role is None:
            # Providers are still attached, without a role
            errors.add(
                "There is no encounter role for the given uuid "
                f"{ctx.default_encounter_role_uuid}"
            )
    for participant in participants:
        individual = participant.get("individual") if isinstance(participant, Mapping) else None
        provider = resolve(
            ctx.providers.get_provider_by_uuid,
            extract_uuid(individual),
            errors,
            "There is no provider for the given uuid {uuid}",
        )
        if provider is not None:
            encounter.add_provider(role, provider)

    if resource.get("location"):
        entry = _first_mapping(resource.get("location"))
        encounter.location = resolve(
            ctx.locations.get_location_by_uuid,
            extract_uuid(entry.get("location") if entry else None),
            errors,
            "There is no location for the given uuid {uuid}",
        )

    coding = _first_coding(resource)
    name = coding.get("display")
    encounter_type = ctx.encounter_types.get_encounter_type_by_name(name) if name else None
    if encounter_type is None and coding.get("code"):
        # Encounter types may also be linked by uuid
        encounter_type = ctx.encounter_types.get_encounter_type_by_uuid(coding["code"])
    if encounter_type is None:
        errors.add("There is no encounter type for the given type coding")
    encounter.encounter_type = encounter_type

    return ImportResult(encounter, errors.messages)


def visit_from_fhir(resource: Mapping[str, Any], ctx: MappingContext) -> ImportResult[Visit]:
    """Build a :class:`Visit` from a FHIR ``Encounter`` describing a visit."""

    errors = ErrorCollector("Visit")
    visit = Visit(uuid=str(resource.get("id") or uuidlib.uuid4()))
    visit.patient = _patient(resource, ctx, errors)

    types = resource.get("type") or []
    for type_concept in types if isinstance(types, list) else [types]:
        codings = type_concept.get("coding") if isinstance(type_concept, Mapping) else None
        coding = _first_mapping(codings)
        code = coding.get("code") if coding else None
        visit.visit_type = ctx.visit_types.get_visit_type_by_uuid(code) if code else None
        if visit.visit_type is None:
            errors.add("There is no Visit Type for the given type id")

    period = resource.get("period") if isinstance(resource.get("period"), Mapping) else {}
    visit.start_datetime = parse_fhir_datetime(period.get("start"))
    if visit.start_datetime is None:
        errors.add("Start date cannot be empty")
    visit.stop_datetime = parse_fhir_datetime(period.get("end"))
    return ImportResult(visit, errors.messages)


def update_encounter_attributes(source: Encounter, target: Encounter) -> Encounter:
    """Copy imported attributes of ``source`` onto a stored ``target``."""

    target.encounter_datetime = source.encounter_datetime
    target.encounter_type = source.encounter_type
    target.location = source.location
    target.patient = source.patient
    target.date_created = source.date_created
    target.providers = list(source.providers)
    target.form = source.form
    target.observations = list(source.observations)
    target.orders = list(source.orders)
    target.visit = source.visit
    return target
