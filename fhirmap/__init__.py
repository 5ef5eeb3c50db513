"""Bidirectional mapping between clinical records and FHIR resources."""

from .compare import changed_fields, encounters_equal, observations_equal
from .complex_data import (
    EncodedImage,
    attachment_to_image,
    decode_image,
    decode_payload,
    encode_image,
    image_to_attachment,
)
from .config import Settings, load_settings
from .context import AllergyPolicy, MappingContext
from .encounters import (
    encounter_everything,
    encounter_from_fhir,
    encounter_to_composition,
    encounter_to_fhir,
    filter_observations,
    update_encounter_attributes,
    visit_from_fhir,
)
from .errors import ErrorCollector, ImportResult
from .exceptions import (
    ComplexDataError,
    FhirMapError,
    ImageTooWideError,
    NonGrayscaleImageError,
    ObservationGraphError,
    RepositoryError,
)
from .logging_config import configure_logging
from .model import (
    Concept,
    ConceptMapping,
    Datatype,
    Encounter,
    Observation,
    ObservationArena,
)
from .observations import (
    copy_observation_attributes,
    encounter_reference,
    observation_from_fhir,
    observation_to_fhir,
)
from .references import ResourceType, build_reference, extract_uuid
from .services import FileSystemComplexDataStore, InMemoryRepository, load_repository
from .values import value_from_fhir, value_to_fhir

__all__ = [
    "AllergyPolicy",
    "ComplexDataError",
    "Concept",
    "ConceptMapping",
    "Datatype",
    "EncodedImage",
    "Encounter",
    "ErrorCollector",
    "FhirMapError",
    "FileSystemComplexDataStore",
    "ImageTooWideError",
    "ImportResult",
    "InMemoryRepository",
    "MappingContext",
    "NonGrayscaleImageError",
    "Observation",
    "ObservationArena",
    "ObservationGraphError",
    "RepositoryError",
    "ResourceType",
    "Settings",
    "attachment_to_image",
    "build_reference",
    "changed_fields",
    "configure_logging",
    "copy_observation_attributes",
    "decode_image",
    "decode_payload",
    "encode_image",
    "encounter_everything",
    "encounter_from_fhir",
    "encounter_reference",
    "encounter_to_composition",
    "encounter_to_fhir",
    "encounters_equal",
    "extract_uuid",
    "filter_observations",
    "image_to_attachment",
    "load_repository",
    "load_settings",
    "observation_from_fhir",
    "observation_to_fhir",
    "observations_equal",
    "update_encounter_attributes",
    "value_from_fhir",
    "value_to_fhir",
    "visit_from_fhir",
]
