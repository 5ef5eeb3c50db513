"""Command line interface for importing and exporting FHIR resources."""

from enum import Enum

import typer
import json
import logging
import sys
from typing import Any, Optional

from PIL import Image

from fhirmap import (
    ComplexDataError,
    ErrorCollector,
    FileSystemComplexDataStore,
    MappingContext,
    RepositoryError,
    configure_logging,
    decode_payload,
    encode_image,
    encounter_from_fhir,
    image_to_attachment,
    load_repository,
    load_settings,
    observation_from_fhir,
)
from fhirmap.model import Encounter, Observation
from fhirmap.values import format_fhir_datetime, value_as_string


class Verbosity(str, Enum):
    """Logging verbosity levels."""

    QUIET = "quiet"
    INFO = "info"
    DEBUG = "debug"


app = typer.Typer(help="fhirmap command line interface")


def _configure(verbosity: Verbosity) -> None:
    level = logging.INFO
    if verbosity == Verbosity.DEBUG:
        level = logging.DEBUG
    elif verbosity == Verbosity.QUIET:
        level = logging.WARNING
    configure_logging(level, stream=sys.stderr)


def _build_context(dictionary: str, config: str | None) -> MappingContext:
    try:
        settings = load_settings(config)
        repository = load_repository(dictionary)
    except (ValueError, RepositoryError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    store = FileSystemComplexDataStore(settings.complex_data_dir)
    return MappingContext.from_settings(settings, repository, store)


def _load_json(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def _write_output(data: dict[str, Any], output: str | None) -> None:
    output_text = json.dumps(data, indent=2)
    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(output_text)
    else:
        print(output_text)


def _uuid(entity) -> Optional[str]:
    return entity.uuid if entity is not None else None


def _timestamp(value) -> Optional[str]:
    return format_fhir_datetime(value) if value is not None else None


def _observation_summary(obs: Observation, locale: str) -> dict[str, Any]:
    return {
        "uuid": obs.uuid,
        "person": _uuid(obs.person),
        "concept": _uuid(obs.concept),
        "obs_datetime": _timestamp(obs.obs_datetime),
        "value_type": obs.value.datatype.value if obs.value is not None else None,
        "value": value_as_string(obs.value, locale) if obs.value is not None else None,
        "status": obs.status.value if obs.status else None,
        "interpretation": obs.interpretation.name if obs.interpretation else None,
        "location": _uuid(obs.location),
        "encounter": _uuid(obs.encounter),
        "previous_version": obs.previous_version_uuid,
        "comment": obs.comment,
    }


def _encounter_summary(encounter: Encounter) -> dict[str, Any]:
    return {
        "uuid": encounter.uuid,
        "patient": _uuid(encounter.patient),
        "encounter_datetime": _timestamp(encounter.encounter_datetime),
        "encounter_type": _uuid(encounter.encounter_type),
        "location": _uuid(encounter.location),
        "providers": [
            {"provider": p.provider.uuid, "role": _uuid(p.role)}
            for p in encounter.providers
        ],
    }


@app.command("import-observation")
def import_observation(
    resource: str,
    dictionary: str = typer.Option(..., help="JSON or YAML concept and person dictionary"),
    config: str | None = typer.Option(None, help="YAML settings file"),
    output: str | None = typer.Option(None, "-o", help="File path for the result (defaults to stdout)"),
    strict: bool = typer.Option(False, help="Exit with status 1 when the import reports errors"),
    verbosity: Verbosity = typer.Option(Verbosity.QUIET, help="Logging verbosity"),
) -> None:
    """Import a FHIR Observation and report the result and its errors."""

    _configure(verbosity)
    ctx = _build_context(dictionary, config)
    result = observation_from_fhir(_load_json(resource), ctx)
    _write_output(
        {
            "observation": _observation_summary(result.entity, ctx.locale.get_locale()),
            "errors": result.errors,
            "decimal_updates": [c.uuid for c in result.decimal_updates],
        },
        output,
    )
    if strict and result.errors:
        raise typer.Exit(code=1)


@app.command("import-encounter")
def import_encounter(
    resource: str,
    dictionary: str = typer.Option(..., help="JSON or YAML concept and person dictionary"),
    config: str | None = typer.Option(None, help="YAML settings file"),
    output: str | None = typer.Option(None, "-o", help="File path for the result (defaults to stdout)"),
    strict: bool = typer.Option(False, help="Exit with status 1 when the import reports errors"),
    verbosity: Verbosity = typer.Option(Verbosity.QUIET, help="Logging verbosity"),
) -> None:
    """Import a FHIR Encounter and report the result and its errors."""

    _configure(verbosity)
    ctx = _build_context(dictionary, config)
    result = encounter_from_fhir(_load_json(resource), ctx)
    _write_output(
        {"encounter": _encounter_summary(result.entity), "errors": result.errors},
        output,
    )
    if strict and result.errors:
        raise typer.Exit(code=1)


@app.command("encode-image")
def encode_image_command(
    image: str,
    uuid: str = typer.Option(..., help="Observation UUID used in the attachment URL"),
    config: str | None = typer.Option(None, help="YAML settings file"),
    output: str | None = typer.Option(None, "-o", help="File path for the attachment (defaults to stdout)"),
) -> None:
    """Encode a grayscale image as a FHIR Attachment."""

    settings = load_settings(config)
    try:
        with Image.open(image) as img:
            encoded = encode_image(img)
    except OSError as exc:
        typer.echo(f"Cannot load image: {exc}", err=True)
        raise typer.Exit(code=1)
    except ComplexDataError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    _write_output(image_to_attachment(encoded, f"{settings.complex_data_url}{uuid}"), output)


@app.command("decode-image")
def decode_image_command(
    payload: str,
    output: str = typer.Option(..., "-o", "--output", help="Destination PNG file"),
) -> None:
    """Decode a textual ``height width pixels...`` payload to a PNG file."""

    _configure(Verbosity.QUIET)
    with open(payload, "r", encoding="utf-8") as fh:
        text = fh.read()
    errors = ErrorCollector("Attachment")
    image = decode_payload(text, errors)
    if image is None:
        for message in errors:
            typer.echo(message, err=True)
        raise typer.Exit(code=1)
    image.save(output, format="PNG")


def main(argv: list[str] | None = None) -> None:
    """Entry point for programmatic invocation."""

    from typer.main import get_command

    get_command(app).main(args=argv or sys.argv[1:], standalone_mode=False)


if __name__ == "__main__":
    from typer.main import get_command

    get_command(app).main(args=sys.argv[1:])
