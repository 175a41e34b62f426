"""Settings for jvmprof, loaded from JVMPROF_* environment variables."""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "JVMPROF_"

# Archives smaller than this are redirect or error pages, not releases.
MIN_ARCHIVE_BYTES = 100_000

DEFAULT_DOWNLOAD_BASE_URL = "https://github.com/async-profiler/async-profiler/releases/download"


class Settings(BaseModel):
    """Runtime configuration."""

    profiler_version: str = "4.1"
    profiler_dir: Path = Path("profiler")
    results_dir: Path | None = None
    download_base_url: str = DEFAULT_DOWNLOAD_BASE_URL
    min_archive_bytes: int = Field(default=MIN_ARCHIVE_BYTES, ge=0)
    download_timeout: float = Field(default=120.0, gt=0)
    transports: list[str] = Field(default_factory=lambda: ["httpx", "curl"])
    graceful_timeout: int = Field(default=10, ge=1)
    java_home: Path | None = None
    log_level: str = "WARNING"

    @field_validator("transports", mode="before")
    @classmethod
    def split_transports(cls, value):
        """Accept a comma-separated string for the transport list."""
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Upper-case the log level name."""
        return value.upper()

    @property
    def resolved_results_dir(self) -> Path:
        """Results directory, defaulting to <profiler_dir>/results."""
        return self.results_dir or self.profiler_dir / "results"


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build settings from environment variables with the JVMPROF_ prefix."""
    environ = os.environ if environ is None else environ
    values = {}
    for name in Settings.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key in environ:
            values[name] = environ[key]
    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and return settings (cached)."""
    return load_settings()


def reload_settings() -> Settings:
    """Drop the cached settings and load them again."""
    get_settings.cache_clear()
    return get_settings()
