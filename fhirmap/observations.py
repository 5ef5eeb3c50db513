"""Conversion between :class:`Observation` records and FHIR Observations."""

from __future__ import annotations

import uuid as uuidlib
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import structlog

from .constants import (
    DEFAULT_OBSERVATION_STATUS,
    ENCOUNTER_EXTENSION_URI,
    HAS_MEMBER,
    LOCATION_EXTENSION_URI,
    PREVIOUS_VERSION_DISPLAY,
    REPLACES,
)
from .context import MappingContext
from .errors import ErrorCollector, ImportResult
from .model import (
    Encounter,
    Interpretation,
    Observation,
    ObservationArena,
    ObsStatus,
)
from .references import (
    ResourceType,
    build_reference,
    extract_uuid,
    person_display,
    provider_display,
    resolve,
)
from .values import (
    NO_MATCHING_CONCEPT,
    concept_codings,
    format_fhir_datetime,
    parse_fhir_datetime,
    resolve_concept,
    value_from_fhir,
    value_to_fhir,
)

logger = structlog.get_logger(__name__)


def encounter_reference(encounter: Encounter) -> Dict[str, str]:
    """Return a reference to ``encounter``."""

    return build_reference(ResourceType.ENCOUNTER, encounter.uuid)


def _related(obs: Observation, arena: Optional[ObservationArena]) -> List[Dict[str, Any]]:
    related = []
    if arena is not None:
        for member in arena.members(obs.uuid):
            display = member.concept.name if member.concept else None
            related.append(
                {
                    "type": HAS_MEMBER,
                    "target": build_reference(ResourceType.OBSERVATION, member.uuid, display),
                }
            )
    if obs.previous_version_uuid:
        related.append(
            {
                "type": REPLACES,
                "target": build_reference(
                    ResourceType.OBSERVATION,
                    obs.previous_version_uuid,
                    PREVIOUS_VERSION_DISPLAY,
                ),
            }
        )
    return related


def _extensions(obs: Observation) -> List[Dict[str, Any]]:
    extensions = []
    if obs.location is not None:
        extensions.append(
            {
                "url": LOCATION_EXTENSION_URI,
                "valueReference": build_reference(
                    ResourceType.LOCATION, obs.location.uuid, obs.location.name
                ),
            }
        )
    if obs.encounter is not None:
        extensions.append(
            {
                "url": ENCOUNTER_EXTENSION_URI,
                "valueReference": encounter_reference(obs.encounter),
            }
        )
    return extensions


def observation_to_fhir(
    obs: Observation,
    ctx: MappingContext,
    arena: Optional[ObservationArena] = None,
    errors: Optional[ErrorCollector] = None,
) -> Dict[str, Any]:
    """Convert ``obs`` to a FHIR ``Observation`` resource.

    Parameters
    ----------
    obs:
        Observation to export.
    ctx:
        Collaborators used for locale and complex data lookups.
    arena:
        Observations addressable by UUID, used to list group members.
    errors:
        Optional collector for problems that do not stop the export.

    Raises
    ------
    ComplexDataError
        If a complex value holds an image that cannot be encoded.
    """

    resource: Dict[str, Any] = {"resourceType": "Observation", "id": obs.uuid}

    status = obs.status.value if obs.status is not None else DEFAULT_OBSERVATION_STATUS
    resource["status"] = status

    if obs.concept is not None:
        resource["code"] = {
            "coding": concept_codings(obs.concept, ctx.locale.get_locale())
        }

    if obs.person is not None:
        resource["subject"] = build_reference(
            ResourceType.PATIENT, obs.person.uuid, person_display(obs.person)
        )

    if obs.obs_datetime is not None:
        resource["effectiveDateTime"] = format_fhir_datetime(obs.obs_datetime)
    issued = obs.date_created or obs.obs_datetime
    if issued is not None:
        resource["issued"] = format_fhir_datetime(issued)

    if obs.encounter is not None:
        performers = [
            build_reference(ResourceType.PRACTITIONER, provider.uuid, provider_display(provider))
            for provider in obs.encounter.provider_list()
        ]
        if performers:
            resource["performer"] = performers

    resource.update(value_to_fhir(obs, ctx, errors))

    if obs.interpretation is not None:
        resource["interpretation"] = {"text": obs.interpretation.name}
    if obs.comment:
        resource["comment"] = obs.comment

    extensions = _extensions(obs)
    if extensions:
        resource["extension"] = extensions

    related = _related(obs, arena)
    if related:
        resource["related"] = related
    return resource


def _effective_datetime(resource: Mapping[str, Any], errors: ErrorCollector) -> Optional[datetime]:
    text = resource.get("effectiveDateTime")
    if text is None:
        period = resource.get("effectivePeriod")
        if isinstance(period, Mapping):
            text = period.get("start")
    if not text:
        errors.add("Observation DateTime cannot be empty")
        return None
    parsed = parse_fhir_datetime(text)
    if parsed is None:
        errors.add(f"Observation DateTime {text!r} is not a valid date time")
    return parsed


def _extension_uuid(extension: Mapping[str, Any]) -> str:
    explicit = extension.get("id")
    if isinstance(explicit, str) and explicit:
        return explicit
    return extract_uuid(extension.get("valueReference"))


def _apply_extensions(
    obs: Observation,
    resource: Mapping[str, Any],
    ctx: MappingContext,
    errors: ErrorCollector,
) -> None:
    for extension in resource.get("extension") or []:
        if not isinstance(extension, Mapping):
            continue
        url = str(extension.get("url", "")).lower()
        if url == LOCATION_EXTENSION_URI.lower():
            obs.location = resolve(
                ctx.locations.get_location_by_uuid,
                _extension_uuid(extension),
                errors,
                "Tried to parse location; location ID does not exist",
            )
        elif url == ENCOUNTER_EXTENSION_URI.lower():
            obs.encounter = resolve(
                ctx.encounters.get_encounter_by_uuid,
                _extension_uuid(extension),
                errors,
                "Tried to parse encounter; Encounter ID does not exist",
            )


def _apply_status(
    obs: Observation,
    resource: Mapping[str, Any],
    ctx: MappingContext,
    errors: ErrorCollector,
) -> None:
    if not ctx.status_supported:
        # Older platforms have no status or interpretation on observations
        logger.debug("status_not_supported", obs=obs.uuid)
        return
    status = resource.get("status")
    if status:
        try:
            obs.status = ObsStatus[str(status).upper().replace("-", "_")]
        except KeyError:
            errors.add(f"Unknown observation status {status}")
    interpretation = resource.get("interpretation")
    if isinstance(interpretation, list):
        interpretation = interpretation[0] if interpretation else None
    text = interpretation.get("text") if isinstance(interpretation, Mapping) else None
    if isinstance(text, str) and text.strip():
        try:
            obs.interpretation = Interpretation[text.strip().upper()]
        except KeyError:
            errors.add(f"Unknown observation interpretation {text}")


def _previous_version(resource: Mapping[str, Any]) -> Optional[str]:
    for related in resource.get("related") or []:
        if isinstance(related, Mapping) and related.get("type") == REPLACES:
            return extract_uuid(related.get("target")) or None
    return None


def observation_from_fhir(
    resource: Mapping[str, Any],
    ctx: MappingContext,
    encounter: Optional[Encounter] = None,
) -> ImportResult[Observation]:
    """Build an :class:`Observation` from a FHIR resource.

    Every problem is recorded in the returned :class:`ImportResult` and the
    observation is populated as far as possible. When ``encounter`` is given
    the observation is attached to it.
    """

    errors = ErrorCollector("Observation")
    obs = Observation(uuid=str(resource.get("id") or uuidlib.uuid4()))
    obs.comment = resource.get("comment")

    subject = resource.get("subject")
    if subject:
        obs.person = resolve(
            ctx.persons.get_person_by_uuid,
            extract_uuid(subject),
            errors,
            "There is no person for the given uuid {uuid}",
        )
    else:
        errors.add("Subject cannot be empty")

    issued = parse_fhir_datetime(resource.get("issued"))
    obs.date_created = issued or datetime.now(timezone.utc)
    obs.obs_datetime = _effective_datetime(resource, errors)

    _apply_extensions(obs, resource, ctx, errors)
    if encounter is not None:
        obs.encounter = encounter

    decimal_updates = []
    code = resource.get("code")
    codings = code.get("coding") if isinstance(code, Mapping) else None
    if not codings:
        errors.add("Code cannot be empty")
    else:
        obs.concept = resolve_concept(codings, ctx.concepts)
        if obs.concept is None:
            errors.add(NO_MATCHING_CONCEPT)

    if obs.concept is not None:
        imported = value_from_fhir(resource, obs.concept, obs.uuid, ctx, errors)
        obs.value = imported.value
        if imported.needs_decimal:
            decimal_updates.append(obs.concept)

    _apply_status(obs, resource, ctx, errors)
    obs.previous_version_uuid = _previous_version(resource)

    return ImportResult(obs, errors.messages, decimal_updates)


def copy_observation_attributes(
    source: Observation, target: Observation, errors: ErrorCollector
) -> Observation:
    """Copy imported attributes of ``source`` onto a stored ``target``.

    The value is copied only when it agrees with the copied concept.
    """

    target.person = source.person
    target.obs_datetime = source.obs_datetime
    target.concept = source.concept
    if source.value_matches_concept():
        target.value = source.value
    else:
        errors.add(
            "Couldn't copy value to the Observation. Caused by value kind "
            f"{source.value.datatype.value} not matching concept datatype "
            f"{source.concept.datatype.value}"
        )
    target.comment = source.comment
    return target
