"""Enhancer and exporter configuration loaded from environment variables."""

import os
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from pdc_enhancer.services.metrics import fact_label_name

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "WARNING", "ERROR")

# Well-known locations of the SCM summary export under SCM_DIR.
SCORE_DATA_DIRNAME = "score_data"
CURRENT_EXPORT_FILENAME = "Summary_Report_API.csv"


def _validate_host(name: str, v: str) -> str:
    if not v or not v.strip():
        raise ValueError(f"{name} must be set and non-empty")
    s = v.strip()
    if "://" in s or "/" in s:
        raise ValueError(f"{name} must be a bare host name (no scheme or path), got {v!r}")
    return s


def _validate_port(name: str, v: int) -> int:
    if v < 1 or v > 65535:
        raise ValueError(f"{name} must be between 1 and 65535")
    return v


def _validate_absolute_path(name: str, v: str) -> str:
    if not v or not v.strip():
        raise ValueError(f"{name} must be set and non-empty")
    if not os.path.isabs(v.strip()):
        raise ValueError(f"{name} must be an absolute path, got {v!r}")
    return v.strip()


class Settings(BaseSettings):
    """Validated enhancer/exporter settings from env and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    LOG_LEVEL: str = "INFO"

    # PuppetDB (node inventory)
    PUPPETDB_HOST: str = "localhost"
    PUPPETDB_PORT: int = 8080
    PUPPETDB_PROTOCOL: Literal["http", "https"] = "http"
    PUPPETDB_SSL_CERT: str | None = None
    PUPPETDB_SSL_KEY: str | None = None
    PUPPETDB_SSL_CA: str | None = None
    # Dotted fact paths exported as node labels; comma separated in the environment.
    PUPPETDB_FACTS: Annotated[list[str], NoDecode] = [
        "os.family",
        "os.name",
        "os.release.full",
        "kernel",
    ]

    # Infra Assistant (supplementary annotations)
    INFRA_ASSISTANT_ENABLED: bool = True
    INFRA_ASSISTANT_HOST: str = "localhost"
    INFRA_ASSISTANT_PORT: int = 8145
    INFRA_ASSISTANT_PROTOCOL: Literal["http", "https"] = "https"

    # Shared HTTP policy for PuppetDB, Infra Assistant and SCM polling
    HTTP_TIMEOUT: float = 60.0
    HTTP_RETRIES: int = 3
    RETRY_DELAY: float = 2.0

    # Metrics output (textfile collector dropzone)
    DROPZONE_PATH: str = "/opt/puppetlabs/puppet/cache/state/dropzone"
    OUTPUT_FILENAME: str = "puppet_enhanced_metrics.prom"

    # Security Compliance Management export (required only for the exporter)
    SCM_DIR: str = "/opt/puppetlabs/puppet_data_connector_enhancer"
    SCM_HOST: str | None = None
    SCM_API_TOKEN: SecretStr | None = None
    SCM_EXPORT_RETENTION: int = 8
    SCM_POLL_INTERVAL: float = 30.0
    SCM_MAX_WAIT_TIME: float = 900.0
    SCM_FACTS_DIR: str | None = None

    @property
    def score_data_dir(self) -> str:
        return os.path.join(self.SCM_DIR, SCORE_DATA_DIRNAME)

    @property
    def current_export_path(self) -> str:
        """Path of the most recent SCM export; the only file the enhancer reads."""
        return os.path.join(self.score_data_dir, CURRENT_EXPORT_FILENAME)

    @property
    def output_path(self) -> str:
        return os.path.join(self.DROPZONE_PATH, self.OUTPUT_FILENAME)

    @property
    def puppetdb_base_url(self) -> str:
        return f"{self.PUPPETDB_PROTOCOL}://{self.PUPPETDB_HOST}:{self.PUPPETDB_PORT}"

    @property
    def infra_assistant_base_url(self) -> str:
        return (
            f"{self.INFRA_ASSISTANT_PROTOCOL}://"
            f"{self.INFRA_ASSISTANT_HOST}:{self.INFRA_ASSISTANT_PORT}"
        )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        normalized = (v or "").strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}, got {v!r}")
        return normalized

    @field_validator("PUPPETDB_HOST")
    @classmethod
    def validate_puppetdb_host(cls, v: str) -> str:
        return _validate_host("PUPPETDB_HOST", v)

    @field_validator("INFRA_ASSISTANT_HOST")
    @classmethod
    def validate_infra_assistant_host(cls, v: str) -> str:
        return _validate_host("INFRA_ASSISTANT_HOST", v)

    @field_validator("PUPPETDB_PORT")
    @classmethod
    def validate_puppetdb_port(cls, v: int) -> int:
        return _validate_port("PUPPETDB_PORT", v)

    @field_validator("INFRA_ASSISTANT_PORT")
    @classmethod
    def validate_infra_assistant_port(cls, v: int) -> int:
        return _validate_port("INFRA_ASSISTANT_PORT", v)

    @field_validator("PUPPETDB_FACTS", mode="before")
    @classmethod
    def split_puppetdb_facts(cls, v: object) -> object:
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("PUPPETDB_FACTS")
    @classmethod
    def validate_puppetdb_facts(cls, v: list[str]) -> list[str]:
        for path in v:
            if not path or any(not part for part in path.split(".")):
                raise ValueError(f"PUPPETDB_FACTS entries must be dotted fact paths, got {path!r}")
        labels: dict[str, str] = {}
        for path in v:
            name = fact_label_name(path)
            if name in labels and labels[name] != path:
                raise ValueError(
                    f"PUPPETDB_FACTS entries {labels[name]!r} and {path!r} both map to label {name!r}"
                )
            labels[name] = path
        return v

    @field_validator("HTTP_TIMEOUT")
    @classmethod
    def validate_http_timeout(cls, v: float) -> float:
        if v < 1 or v > 300:
            raise ValueError("HTTP_TIMEOUT must be between 1 and 300 seconds")
        return v

    @field_validator("HTTP_RETRIES")
    @classmethod
    def validate_http_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("HTTP_RETRIES must be at least 1")
        return v

    @field_validator("RETRY_DELAY")
    @classmethod
    def validate_retry_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("RETRY_DELAY must not be negative")
        return v

    @field_validator("DROPZONE_PATH")
    @classmethod
    def validate_dropzone_path(cls, v: str) -> str:
        return _validate_absolute_path("DROPZONE_PATH", v)

    @field_validator("OUTPUT_FILENAME")
    @classmethod
    def validate_output_filename(cls, v: str) -> str:
        s = (v or "").strip()
        if not s or s in (".", "..") or "/" in s or os.sep in s:
            raise ValueError("OUTPUT_FILENAME must be a plain file name without directories")
        return s

    @field_validator("SCM_DIR")
    @classmethod
    def validate_scm_dir(cls, v: str) -> str:
        return _validate_absolute_path("SCM_DIR", v)

    @field_validator("SCM_HOST")
    @classmethod
    def validate_scm_host(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        s = v.strip().rstrip("/")
        if not s.lower().startswith("https://"):
            raise ValueError("SCM_HOST must use https (e.g. https://scm.example.com)")
        return s

    @field_validator("SCM_API_TOKEN")
    @classmethod
    def validate_scm_api_token(cls, v: SecretStr | None) -> SecretStr | None:
        if v is None:
            return None
        if not v.get_secret_value() or not v.get_secret_value().strip():
            raise ValueError("SCM_API_TOKEN must be non-empty when set")
        return v

    @field_validator("SCM_EXPORT_RETENTION")
    @classmethod
    def validate_scm_export_retention(cls, v: int) -> int:
        if v < 1:
            raise ValueError("SCM_EXPORT_RETENTION must be at least 1")
        return v

    @field_validator("SCM_POLL_INTERVAL")
    @classmethod
    def validate_scm_poll_interval(cls, v: float) -> float:
        if v < 0:
            raise ValueError("SCM_POLL_INTERVAL must not be negative")
        return v

    @field_validator("SCM_MAX_WAIT_TIME")
    @classmethod
    def validate_scm_max_wait_time(cls, v: float) -> float:
        if v < 1:
            raise ValueError("SCM_MAX_WAIT_TIME must be at least 1 second")
        return v

    @field_validator("SCM_FACTS_DIR")
    @classmethod
    def validate_scm_facts_dir(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return _validate_absolute_path("SCM_FACTS_DIR", v)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
