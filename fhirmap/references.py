"""Build and parse ``<ResourceType>/<uuid>`` references."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from .constants import IDENTIFIER_LABEL
from .errors import ErrorCollector
from .model import Person, Provider

T = TypeVar("T")


class ResourceType(str, Enum):
    """Resource types that may appear in a reference string."""

    PATIENT = "Patient"
    PRACTITIONER = "Practitioner"
    LOCATION = "Location"
    ENCOUNTER = "Encounter"
    OBSERVATION = "Observation"


def build_reference(
    resource_type: ResourceType, uuid: str, display: Optional[str] = None
) -> Dict[str, str]:
    """Return a FHIR ``Reference`` pointing at ``resource_type/uuid``."""

    ref = {"reference": f"{resource_type.value}/{uuid}"}
    if display:
        ref["display"] = display
    return ref


def _with_identifier(name: str, identifier: Optional[str]) -> str:
    if not identifier:
        return name
    return f"{name}({IDENTIFIER_LABEL}:{identifier})"


def provider_display(provider: Provider) -> str:
    """Return ``name(Identifier:id)`` for ``provider``."""

    return _with_identifier(provider.name, provider.identifier)


def person_display(person: Person) -> str:
    """Return ``Given Family(Identifier:id)`` for ``person``."""

    return _with_identifier(person.display_name, person.identifier)


def extract_uuid(reference: Optional[Mapping[str, Any]]) -> str:
    """Return the UUID a reference points at or ``""`` if it has none.

    The explicit ``id`` field wins, then ``identifier.value``, then the path
    segment after the last ``/`` of the ``reference`` string. An empty
    result is a data quality problem for the caller to record.
    """

    if not isinstance(reference, Mapping):
        return ""
    explicit = reference.get("id")
    if isinstance(explicit, str) and explicit.strip():
        return explicit.strip()
    identifier = reference.get("identifier")
    if isinstance(identifier, Mapping):
        value = identifier.get("value")
        if isinstance(value, str) and value.strip():
            return value.strip()
    ref_str = reference.get("reference")
    if isinstance(ref_str, str) and "/" in ref_str:
        parts = ref_str.split("/")
        segment = parts[-1]
        # Versioned references end in ``_history/<version>``
        if len(parts) >= 4 and parts[-2] == "_history":
            segment = parts[-3]
        return segment.strip()
    return ""


def resolve(
    lookup: Callable[[str], Optional[T]],
    uuid: str,
    errors: ErrorCollector,
    message: str,
) -> Optional[T]:
    """Return ``lookup(uuid)`` recording ``message`` when nothing is found.

    ``message`` may contain ``{uuid}`` which is filled in before recording.
    """

    entity = lookup(uuid) if uuid else None
    if entity is None:
        errors.add(message.format(uuid=uuid), uuid=uuid)
    return entity
