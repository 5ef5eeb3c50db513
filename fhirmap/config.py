from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator, model_validator

import os
import yaml

from .constants import (
    DEFAULT_COMPLEX_DATA_URL,
    DEFAULT_ENCOUNTER_ROLE_UUID,
    OBS_ALLERGY_STRATEGY,
)
from .context import AllergyPolicy


class Settings(BaseModel):
    """Configuration options loaded from YAML or environment variables."""

    # Allergy handling
    allergy_strategy: Optional[str] = None
    obs_allergy_concept_uuid: Optional[str] = None

    # Complex data
    complex_data_url: str = DEFAULT_COMPLEX_DATA_URL
    complex_data_dir: str = "data"

    # Host platform
    locale: str = "en"
    default_encounter_role_uuid: str = DEFAULT_ENCOUNTER_ROLE_UUID
    status_supported: bool = True

    @field_validator("allergy_strategy")
    @classmethod
    def _check_strategy(cls, value: Optional[str]) -> Optional[str]:
        """Only the observation based allergy strategy is understood."""
        if value is not None and value != OBS_ALLERGY_STRATEGY:
            raise ValueError(
                f"allergy_strategy must be '{OBS_ALLERGY_STRATEGY}' or unset"
            )
        return value

    @field_validator("locale", "default_encounter_role_uuid", "complex_data_dir")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @model_validator(mode="after")
    def _check_allergy_concept(self) -> "Settings":
        """Require the marker concept when allergy filtering is on."""
        if self.allergy_strategy and not self.obs_allergy_concept_uuid:
            raise ValueError(
                "obs_allergy_concept_uuid is required for the obs allergy strategy"
            )
        return self

    def allergy_policy(self) -> AllergyPolicy:
        return AllergyPolicy(
            enabled=self.allergy_strategy == OBS_ALLERGY_STRATEGY,
            concept_uuid=self.obs_allergy_concept_uuid,
        )


def load_settings(path: str | None = None) -> Settings:
    """Return :class:`Settings` from ``path`` and environment variables."""

    data: dict[str, object] = {}
    if path:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    env = os.getenv
    if "allergy_strategy" not in data and env("FHIRMAP_ALLERGY_STRATEGY"):
        data["allergy_strategy"] = env("FHIRMAP_ALLERGY_STRATEGY")
    if "obs_allergy_concept_uuid" not in data and env("FHIRMAP_ALLERGY_CONCEPT"):
        data["obs_allergy_concept_uuid"] = env("FHIRMAP_ALLERGY_CONCEPT")
    if "complex_data_url" not in data and env("FHIRMAP_COMPLEX_DATA_URL"):
        data["complex_data_url"] = env("FHIRMAP_COMPLEX_DATA_URL")
    if "complex_data_dir" not in data and env("FHIRMAP_COMPLEX_DATA_DIR"):
        data["complex_data_dir"] = env("FHIRMAP_COMPLEX_DATA_DIR")
    if "locale" not in data and env("FHIRMAP_LOCALE"):
        data["locale"] = env("FHIRMAP_LOCALE")
    if "default_encounter_role_uuid" not in data and env("FHIRMAP_ENCOUNTER_ROLE"):
        data["default_encounter_role_uuid"] = env("FHIRMAP_ENCOUNTER_ROLE")
    if "status_supported" not in data and env("FHIRMAP_STATUS_SUPPORTED"):
        data["status_supported"] = env("FHIRMAP_STATUS_SUPPORTED").lower() == "true"

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
