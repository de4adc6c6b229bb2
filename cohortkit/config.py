"""Settings loaded from environment variables and dotenv."""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, TypeVar

from dotenv import load_dotenv

from .adapters.yaml_catalog import DEFAULT_PRESETS_PATH, DEFAULT_TAXONOMY_PATH
from .errors import ConfigurationError
from .models import AggregationConfig, PrivacyParams

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

T = TypeVar("T")


@dataclass(frozen=True)
class Settings:
    taxonomy_path: Path = DEFAULT_TAXONOMY_PATH
    presets_path: Path = DEFAULT_PRESETS_PATH
    database_url: str = ""
    epsilon: float = 1.0
    sensitivity: float = 1.0
    min_cohort_size: int = 50
    min_data_points: int = 100
    suppression_threshold: int = 10
    event_retention_days: int = 30
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read ``COHORTKIT_*`` variables, loading a ``.env`` file first.

        Pass ``environ`` to read from a plain mapping instead of the process
        environment; no dotenv file is loaded in that case.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        def read(name: str, default: T, parse: Callable[[str], T]) -> T:
            raw = environ.get(name, "").strip()
            if not raw:
                return default
            try:
                return parse(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{name} has an invalid value: {raw!r}") from exc

        settings = cls(
            taxonomy_path=read("COHORTKIT_TAXONOMY_PATH", DEFAULT_TAXONOMY_PATH, Path),
            presets_path=read("COHORTKIT_PRESETS_PATH", DEFAULT_PRESETS_PATH, Path),
            database_url=environ.get("COHORTKIT_DATABASE_URL", "").strip(),
            epsilon=read("COHORTKIT_EPSILON", 1.0, float),
            sensitivity=read("COHORTKIT_SENSITIVITY", 1.0, float),
            min_cohort_size=read("COHORTKIT_MIN_COHORT_SIZE", 50, int),
            min_data_points=read("COHORTKIT_MIN_DATA_POINTS", 100, int),
            suppression_threshold=read("COHORTKIT_SUPPRESSION_THRESHOLD", 10, int),
            event_retention_days=read("COHORTKIT_EVENT_RETENTION_DAYS", 30, int),
            log_level=environ.get("COHORTKIT_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.epsilon <= 0:
            raise ConfigurationError("COHORTKIT_EPSILON must be positive")
        if self.sensitivity <= 0:
            raise ConfigurationError("COHORTKIT_SENSITIVITY must be positive")
        for name in ("min_cohort_size", "min_data_points", "suppression_threshold", "event_retention_days"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"COHORTKIT_{name.upper()} must not be negative")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigurationError(f"COHORTKIT_LOG_LEVEL is not a logging level: {self.log_level!r}")

    def aggregation_config(self) -> AggregationConfig:
        return AggregationConfig(
            min_cohort_size=self.min_cohort_size,
            min_data_points=self.min_data_points,
            suppression_threshold=self.suppression_threshold,
        )

    def privacy_params(self) -> PrivacyParams:
        return PrivacyParams(epsilon=self.epsilon, sensitivity=self.sensitivity)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
