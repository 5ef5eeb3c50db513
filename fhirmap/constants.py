"""URIs and fixed codes shared by the FHIR mappers."""

# Coding system of the internal concept dictionary
INTERNAL_SYSTEM_URI = "http://openmrs.org"
NUMERIC_CONCEPT_MEASURE_URI = "http://unitsofmeasure.org"

LOCATION_EXTENSION_URI = "http://fhir-es.transcendinsights.com/stu3/StructureDefinition/resource-location"
ENCOUNTER_EXTENSION_URI = "http://fhir-es.transcendinsights.com/stu3/StructureDefinition/resource-encounter"

DEFAULT_COMPLEX_DATA_URL = "/complexObsServlet?obsUuid="
DEFAULT_ENCOUNTER_ROLE_UUID = "a0b03050-c99b-11e0-9572-0800200c9a66"

CONFIDENTIALITY_CODE = "R"
COMPOSITION_STATUS = "final"
ENCOUNTER_STATUS = "finished"
DEFAULT_OBSERVATION_STATUS = "final"

IDENTIFIER_LABEL = "Identifier"
LOCATION_SECTION_TITLE = "Location"
OBSERVATION_SECTION_TITLE = "Observations"
PREVIOUS_VERSION_DISPLAY = "Old Obs which replaced by the new Obs"

# Relationship codes for Observation.related
HAS_MEMBER = "has-member"
REPLACES = "replaces"

# Allergy strategy that stores allergies as observations
OBS_ALLERGY_STRATEGY = "obs"

IMAGE_CONTENT_TYPE = "application/octet-stream"
