"""Per-datatype conversion of observation values to and from FHIR."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from .complex_data import attachment_to_image, encode_image, image_to_attachment
from .constants import INTERNAL_SYSTEM_URI, NUMERIC_CONCEPT_MEASURE_URI
from .context import ConceptLookup, MappingContext
from .errors import ErrorCollector
from .model import (
    BooleanValue,
    CodedValue,
    ComplexValue,
    Concept,
    Datatype,
    DateTimeValue,
    DateValue,
    NumericValue,
    Observation,
    ObsValue,
    TextValue,
)

logger = structlog.get_logger(__name__)

NO_MATCHING_CONCEPT = "No matching concept found for the given codings"

_PARTIAL_DATE = re.compile(r"^(\d{4})(?:-(\d{2}))?$")


# ---------------------------------------------------------------------------
# Date and time helpers
# ---------------------------------------------------------------------------


def format_fhir_datetime(value: datetime | date) -> str:
    """Return FHIR ``dateTime`` (or ``date``) text for ``value``."""

    return value.isoformat()


def parse_fhir_datetime(text: Any) -> Optional[datetime]:
    """Parse FHIR ``date``/``dateTime`` text, returning ``None`` if invalid.

    Partial dates (``YYYY`` and ``YYYY-MM``) resolve to the first day of
    the period.
    """

    if not isinstance(text, str) or not text.strip():
        return None
    text = text.strip()
    partial = _PARTIAL_DATE.match(text)
    if partial:
        month = int(partial.group(2) or 1)
        try:
            return datetime(int(partial.group(1)), month, 1)
        except ValueError:
            return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_fhir_date(text: Any) -> Optional[date]:
    parsed = parse_fhir_datetime(text)
    return parsed.date() if parsed is not None else None


# ---------------------------------------------------------------------------
# Codings
# ---------------------------------------------------------------------------


def internal_coding(concept: Concept, locale: Optional[str] = None) -> Dict[str, str]:
    """Return the coding of ``concept`` in the internal dictionary."""

    return {
        "system": INTERNAL_SYSTEM_URI,
        "code": concept.uuid,
        "display": concept.localized_name(locale),
    }


def concept_codings(concept: Concept, locale: Optional[str] = None) -> List[Dict[str, str]]:
    """Return one coding per external mapping plus the internal coding."""

    codings = []
    for mapping in concept.mappings:
        coding = {"system": mapping.system, "code": mapping.code}
        if mapping.display:
            coding["display"] = mapping.display
        codings.append(coding)
    codings.append(internal_coding(concept, locale))
    return codings


def _same_system(system: str, expected: str) -> bool:
    return system.rstrip("/").lower() == expected.rstrip("/").lower()


def resolve_concept(
    codings: Optional[Iterable[Any]], concepts: ConceptLookup
) -> Optional[Concept]:
    """Return the first concept any of ``codings`` resolves to.

    Codings are tried in order. The internal system resolves by UUID and any
    other system through the external mapping lookup.
    """

    for coding in codings or []:
        if not isinstance(coding, Mapping):
            continue
        code = coding.get("code")
        system = coding.get("system")
        if not isinstance(code, str) or not code or not isinstance(system, str):
            continue
        if _same_system(system, INTERNAL_SYSTEM_URI):
            concept = concepts.get_concept_by_uuid(code)
        else:
            concept = concepts.get_concept_by_mapping(code, system)
        if concept is not None:
            return concept
    return None


# ---------------------------------------------------------------------------
# Stringification
# ---------------------------------------------------------------------------


def value_as_string(value: Optional[ObsValue], locale: Optional[str] = None) -> str:
    """Return a display string for ``value`` in ``locale``."""

    if value is None:
        return ""
    if isinstance(value, NumericValue):
        number = value.value
        return str(int(number)) if float(number).is_integer() else str(number)
    if isinstance(value, CodedValue):
        return value.concept.localized_name(locale)
    if isinstance(value, TextValue):
        return value.text
    if isinstance(value, BooleanValue):
        return "true" if value.value else "false"
    if isinstance(value, (DateValue, DateTimeValue)):
        return value.value.isoformat()
    if isinstance(value, ComplexValue):
        return value.path
    raise TypeError(f"Unsupported observation value {type(value).__name__}")


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

_Exporter = Callable[[Observation, MappingContext, Optional[ErrorCollector]], Dict[str, Any]]


def _quantity(value: float, units: Optional[str]) -> Dict[str, Any]:
    quantity: Dict[str, Any] = {"value": value, "system": NUMERIC_CONCEPT_MEASURE_URI}
    if units:
        quantity["unit"] = units
        quantity["code"] = units
    return quantity


def reference_range(concept: Concept) -> Optional[Dict[str, Any]]:
    """Return the reference range of a numeric concept, if it has bounds."""

    if concept.hi_absolute is None and concept.low_absolute is None:
        return None
    ref_range: Dict[str, Any] = {}
    if concept.low_absolute is not None:
        ref_range["low"] = _quantity(concept.low_absolute, concept.units)
    if concept.hi_absolute is not None:
        ref_range["high"] = _quantity(concept.hi_absolute, concept.units)
    return ref_range


def _export_numeric(obs, ctx, errors):
    result: Dict[str, Any] = {}
    if isinstance(obs.value, NumericValue):
        result["valueQuantity"] = _quantity(obs.value.value, obs.concept.units)
    ref_range = reference_range(obs.concept)
    if ref_range is not None:
        result["referenceRange"] = [ref_range]
    return result


def _export_coded(obs, ctx, errors):
    if not isinstance(obs.value, CodedValue):
        return {}
    codings = concept_codings(obs.value.concept, ctx.locale.get_locale())
    return {"valueCodeableConcept": {"coding": codings}}


def _export_string(obs, ctx, errors):
    if obs.value is None:
        return {}
    return {"valueString": value_as_string(obs.value, ctx.locale.get_locale())}


def _export_boolean(obs, ctx, errors):
    if not isinstance(obs.value, BooleanValue):
        return {}
    code = "true" if obs.value.value else "false"
    return {"valueCodeableConcept": {"coding": [{"code": code}]}}


def _export_period(obs, ctx, errors):
    if not isinstance(obs.value, (DateValue, DateTimeValue)):
        return {}
    instant = format_fhir_datetime(obs.value.value)
    return {"valuePeriod": {"start": instant, "end": instant}}


def _export_complex(obs, ctx, errors):
    if not isinstance(obs.value, ComplexValue):
        return {}
    url = f"{ctx.complex_data_url}{obs.uuid}"
    try:
        image = ctx.complex_store.load(obs.value.path)
    except OSError as exc:
        logger.warning("complex_data_unreadable", obs=obs.uuid, path=obs.value.path, error=str(exc))
        if errors is not None:
            errors.add(f"Cannot load image {obs.value.path}")
        return {"valueAttachment": {"url": url}}
    # Non grayscale and over wide images cannot be represented at all
    encoded = encode_image(image)
    return {"valueAttachment": image_to_attachment(encoded, url)}


_EXPORTERS: Dict[Datatype, _Exporter] = {
    Datatype.NUMERIC: _export_numeric,
    Datatype.CODED: _export_coded,
    Datatype.STRING: _export_string,
    Datatype.BOOLEAN: _export_boolean,
    Datatype.DATETIME: _export_period,
    Datatype.DATE: _export_period,
    Datatype.COMPLEX: _export_complex,
}


def value_to_fhir(
    obs: Observation,
    ctx: MappingContext,
    errors: Optional[ErrorCollector] = None,
) -> Dict[str, Any]:
    """Return the ``value[x]`` (and ``referenceRange``) fields for ``obs``.

    Values whose kind does not match the concept datatype are left out and
    reported as a warning.
    """

    if obs.concept is None:
        return {}
    if not obs.value_matches_concept():
        message = (
            f"Value kind {obs.value.datatype.value} does not match concept "
            f"datatype {obs.concept.datatype.value}"
        )
        logger.warning("value_datatype_mismatch", obs=obs.uuid, error=message)
        if errors is not None:
            errors.add(message)
        return {}
    return _EXPORTERS[obs.concept.datatype](obs, ctx, errors)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@dataclass
class ValueImport:
    """Result of importing a ``value[x]`` element.

    ``needs_decimal`` is set when a fractional number arrived for a concept
    that does not allow decimals. The concept itself is left untouched.
    """

    value: Optional[ObsValue] = None
    needs_decimal: bool = False


_Importer = Callable[
    [Any, Concept, str, MappingContext, ErrorCollector], ValueImport
]

_WIRE_KEYS: Dict[Datatype, Tuple[str, ...]] = {
    Datatype.NUMERIC: ("valueQuantity", "valueInteger"),
    Datatype.CODED: ("valueCodeableConcept",),
    Datatype.STRING: ("valueString",),
    Datatype.BOOLEAN: ("valueCodeableConcept", "valueBoolean"),
    Datatype.DATETIME: ("valuePeriod", "valueDateTime"),
    Datatype.DATE: ("valuePeriod", "valueDateTime"),
    Datatype.COMPLEX: ("valueAttachment",),
}


def _import_numeric(raw, concept, obs_uuid, ctx, errors):
    number = raw.get("value") if isinstance(raw, Mapping) else raw
    if isinstance(number, bool) or number is None:
        errors.add("Numeric value cannot be empty")
        return ValueImport()
    try:
        value = float(number)
    except (TypeError, ValueError):
        errors.add(f"Invalid numeric value {number!r}")
        return ValueImport()
    needs_decimal = not value.is_integer() and not concept.allow_decimal
    if needs_decimal:
        logger.info("concept_needs_decimal", concept=concept.uuid, value=value)
    return ValueImport(NumericValue(value), needs_decimal=needs_decimal)


def _import_coded(raw, concept, obs_uuid, ctx, errors):
    codings = raw.get("coding") if isinstance(raw, Mapping) else None
    value_concept = resolve_concept(codings, ctx.concepts)
    if value_concept is None:
        errors.add(NO_MATCHING_CONCEPT)
        return ValueImport()
    return ValueImport(CodedValue(value_concept))


def _import_string(raw, concept, obs_uuid, ctx, errors):
    if not isinstance(raw, str):
        errors.add("Obs set value failed")
        return ValueImport()
    return ValueImport(TextValue(raw))


def _import_boolean(raw, concept, obs_uuid, ctx, errors):
    if isinstance(raw, bool):
        return ValueImport(BooleanValue(raw))
    codings = raw.get("coding") if isinstance(raw, Mapping) else None
    code = None
    if isinstance(codings, list) and codings and isinstance(codings[0], Mapping):
        code = codings[0].get("code")
    if not isinstance(code, str) or code.strip().lower() not in ("true", "false"):
        errors.add("Setting valueBoolean failed")
        return ValueImport()
    return ValueImport(BooleanValue(code.strip().lower() == "true"))


def _period_start(raw, errors) -> Optional[datetime]:
    text = raw.get("start") if isinstance(raw, Mapping) else raw
    if not text:
        errors.add("Obs value period start cannot be empty")
        return None
    parsed = parse_fhir_datetime(text)
    if parsed is None:
        errors.add(f"Invalid date time value {text!r}")
    return parsed


def _import_datetime(raw, concept, obs_uuid, ctx, errors):
    start = _period_start(raw, errors)
    return ValueImport(DateTimeValue(start) if start is not None else None)


def _import_date(raw, concept, obs_uuid, ctx, errors):
    start = _period_start(raw, errors)
    return ValueImport(DateValue(start.date()) if start is not None else None)


def _import_complex(raw, concept, obs_uuid, ctx, errors):
    if not isinstance(raw, Mapping):
        errors.add("Attachment data cannot be empty")
        return ValueImport()
    image = attachment_to_image(raw, errors)
    if image is None:
        return ValueImport()
    try:
        path = ctx.complex_store.save(obs_uuid, image)
    except OSError as exc:
        errors.add("Could not save file", reason=str(exc))
        return ValueImport()
    return ValueImport(ComplexValue(path))


_IMPORTERS: Dict[Datatype, _Importer] = {
    Datatype.NUMERIC: _import_numeric,
    Datatype.CODED: _import_coded,
    Datatype.STRING: _import_string,
    Datatype.BOOLEAN: _import_boolean,
    Datatype.DATETIME: _import_datetime,
    Datatype.DATE: _import_date,
    Datatype.COMPLEX: _import_complex,
}

for _table in (_EXPORTERS, _IMPORTERS, _WIRE_KEYS):
    _missing = set(Datatype) - set(_table)
    if _missing:  # pragma: no cover - guards new enum members
        raise TypeError(f"Datatypes without a value mapping: {sorted(d.name for d in _missing)}")


def _wire_value(resource: Mapping[str, Any]) -> Tuple[Optional[str], Any]:
    for key, raw in resource.items():
        if key.startswith("value") and len(key) > len("value") and key[5].isupper():
            return key, raw
    return None, None


def value_from_fhir(
    resource: Mapping[str, Any],
    concept: Concept,
    obs_uuid: str,
    ctx: MappingContext,
    errors: ErrorCollector,
) -> ValueImport:
    """Return the typed value of an Observation resource for ``concept``.

    The wire type must agree with the concept datatype; mismatches and
    malformed values are recorded on ``errors`` and yield no value.
    """

    key, raw = _wire_value(resource)
    if key is None:
        errors.add("Obs set value cannot be empty")
        return ValueImport()
    if key not in _WIRE_KEYS[concept.datatype]:
        errors.add(
            f"Value type {key} does not match concept datatype "
            f"{concept.datatype.value}",
            concept=concept.uuid,
        )
        return ValueImport()
    return _IMPORTERS[concept.datatype](raw, concept, obs_uuid, ctx, errors)
