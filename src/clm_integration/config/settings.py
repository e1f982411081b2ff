"""
Application settings.

Settings come from an optional YAML file and are then overridden by
environment variables, so a deployment can ship one file and tune a few
values per environment:

```yaml
database:
  host: db.internal
  name: clm
etl:
  parallel_consumers: 8
  rules_path: config/rules
integration:
  aggregation_timeout_seconds: 60
  in_progress_stale_seconds: 900
```
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_BATCH_SIZE = 1000
DEFAULT_PARALLEL_CONSUMERS = 4
DEFAULT_STAGING_RETENTION_DAYS = 30
DEFAULT_DEDUP_WINDOW_HOURS = 24
DEFAULT_MAX_RETRIES = 3
DEFAULT_AGGREGATION_TIMEOUT_SECONDS = 300


def positive_or_default(value: Any, default: float) -> Any:
    """Replace missing or non-positive values with default."""
    if value is None or float(value) <= 0:
        return default
    return value


class DatabaseSettings(BaseModel):
    host: str = "localhost"
    port: int = 5432
    name: str = "clm"
    user: str = "clm"
    password: str | None = Field(None, repr=False)
    min_pool_size: int = 2
    max_pool_size: int = 10
    timeout: float = 30.0
    statement_timeout_ms: int | None = 30000


class EtlSettings(BaseModel):
    batch_size: int = DEFAULT_BATCH_SIZE
    parallel_consumers: int = DEFAULT_PARALLEL_CONSUMERS
    staging_retention_days: int = DEFAULT_STAGING_RETENTION_DAYS
    default_tenant: str = "DEFAULT"
    rules_path: str | None = None

    @field_validator("batch_size", "parallel_consumers", "staging_retention_days", mode="before")
    @classmethod
    def positive_counts(cls, v, info):
        return positive_or_default(v, cls.model_fields[info.field_name].default)

    @field_validator("default_tenant", mode="before")
    @classmethod
    def default_tenant_not_blank(cls, v):
        if v is None or not str(v).strip():
            return "DEFAULT"
        return str(v).strip()


class IntegrationSettings(BaseModel):
    dedup_window_hours: int = DEFAULT_DEDUP_WINDOW_HOURS
    max_retries: int = DEFAULT_MAX_RETRIES
    aggregation_timeout_seconds: float = DEFAULT_AGGREGATION_TIMEOUT_SECONDS
    # None disables stale release; IN_PROGRESS claims then need an operator
    in_progress_stale_seconds: float | None = None

    @field_validator("dedup_window_hours", "max_retries", "aggregation_timeout_seconds", mode="before")
    @classmethod
    def positive_limits(cls, v, info):
        return positive_or_default(v, cls.model_fields[info.field_name].default)

    @field_validator("in_progress_stale_seconds", mode="before")
    @classmethod
    def stale_disabled_when_not_positive(cls, v):
        if v is None or float(v) <= 0:
            return None
        return v


class Settings(BaseModel):
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    etl: EtlSettings = Field(default_factory=EtlSettings)
    integration: IntegrationSettings = Field(default_factory=IntegrationSettings)


# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DB_HOST": ("database", "host"),
    "DB_PORT": ("database", "port"),
    "DB_NAME": ("database", "name"),
    "DB_USER": ("database", "user"),
    "DB_PASSWORD": ("database", "password"),
    "DB_STATEMENT_TIMEOUT_MS": ("database", "statement_timeout_ms"),
    "CLM_BATCH_SIZE": ("etl", "batch_size"),
    "CLM_PARALLEL_CONSUMERS": ("etl", "parallel_consumers"),
    "CLM_STAGING_RETENTION_DAYS": ("etl", "staging_retention_days"),
    "CLM_DEFAULT_TENANT": ("etl", "default_tenant"),
    "CLM_RULES_PATH": ("etl", "rules_path"),
    "CLM_DEDUP_WINDOW_HOURS": ("integration", "dedup_window_hours"),
    "CLM_MAX_RETRIES": ("integration", "max_retries"),
    "CLM_AGGREGATION_TIMEOUT_SECONDS": ("integration", "aggregation_timeout_seconds"),
    "CLM_IN_PROGRESS_STALE_SECONDS": ("integration", "in_progress_stale_seconds"),
}


def load_settings(path: str | Path | None = None, environ: dict[str, str] | None = None) -> Settings:
    """
    Load settings from an optional YAML file plus environment overrides.

    Args:
        path: YAML settings file; CLM_CONFIG env var when None
        environ: Environment mapping (os.environ by default)

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValueError: If the YAML document is not a mapping
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get("CLM_CONFIG")

    data: dict[str, Any] = {}
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")
        with open(config_path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")
        data = {section: dict(values or {}) for section, values in loaded.items()}

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None and value != "":
            data.setdefault(section, {})[key] = value

    return Settings(**data)
