"""Validated configuration model.

The configuration is assembled from three layers, lowest precedence first:

1. Model defaults defined here.
2. The YAML config file (`CONFIG_FILE`, default `config.yaml`).
3. Environment variables / `.env` (see `api.settings.Settings`).

Example config file::

    restic:
      repository: /repository
      keep_daily: 7
    cron:
      backup: "0 0 2 * * *"
    backups:
      - name: db
        path: /data/db
        pre_command: "docker exec db dump.sh"
      - name: files
        path: /data/files
        exclude: "*.tmp"

All models are frozen: the configuration never changes after startup.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from api.logging_config import get_logger
from api.settings import Settings
from backend.exceptions import ConfigurationError
from backend.services.scheduling.cron import validate_cron_expression

logger = get_logger(__name__)


class BackupSpec(BaseModel):
    """One backup unit: a directory that is snapshotted under a logical name."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="Unique backup name, stored as `name=<name>` snapshot tag")
    path: str = Field(..., description="Directory to back up")
    exclude: Optional[str] = Field(None, description="restic --exclude pattern")
    exclude_file: Optional[str] = Field(None, description="restic --exclude-file path")
    pre_command: Optional[str] = Field(None, description="Shell command run before the backup")
    post_command: Optional[str] = Field(None, description="Shell command run after the backup")

    @field_validator("name", "path")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = str(value or "").strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class ResticConfig(BaseModel):
    """Repository location, password and retention counts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    repository: str = "/repository"
    password: str = Field(..., min_length=1, repr=False)
    keep_daily: int = Field(7, ge=0)
    keep_weekly: int = Field(4, ge=0)
    keep_monthly: int = Field(3, ge=0)


class CronConfig(BaseModel):
    """Cron expressions per job; 6-field expressions start with seconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup: str = "0 0 2 * * *"
    check: str = "0 2 2 * * 0"
    prune: str = "0 3 2 * * 0"
    s3: str = "0 1 2 * * 0"
    metrics: str = "0 0 0 * * *"
    run_metrics_on_startup: bool = True
    run_export_on_startup: bool = False

    @field_validator("backup", "check", "prune", "s3", "metrics")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        return validate_cron_expression(value)


class S3Config(BaseModel):
    """Object storage credentials and archive passphrase."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    access_key: str = Field(..., min_length=1, repr=False)
    secret_key: str = Field(..., min_length=1, repr=False)
    endpoint: str = Field(..., min_length=1)
    bucket: str = Field(..., min_length=1)
    passphrase: str = Field(..., min_length=1, repr=False)
    region: Optional[str] = None


class AppConfig(BaseModel):
    """Complete service configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    restic: ResticConfig
    cron: CronConfig = Field(default_factory=CronConfig)
    s3: S3Config
    metrics_enabled: bool = True
    backups: Tuple[BackupSpec, ...] = ()

    @model_validator(mode="after")
    def _unique_backup_names(self) -> "AppConfig":
        seen = set()
        for backup in self.backups:
            if backup.name in seen:
                raise ValueError(f"duplicate backup name: {backup.name}")
            seen.add(backup.name)
        return self

    @property
    def backup_names(self) -> List[str]:
        """Backup names in configuration order."""

        return [backup.name for backup in self.backups]


# Environment variable -> (section, key) in the YAML layout.
_ENV_OVERRIDES: Dict[str, Tuple[Optional[str], str]] = {
    "RESTIC_REPOSITORY": ("restic", "repository"),
    "RESTIC_KEEP_DAILY": ("restic", "keep_daily"),
    "RESTIC_KEEP_WEEKLY": ("restic", "keep_weekly"),
    "RESTIC_KEEP_MONTHLY": ("restic", "keep_monthly"),
    "CRON_BACKUP": ("cron", "backup"),
    "CRON_CHECK": ("cron", "check"),
    "CRON_PRUNE": ("cron", "prune"),
    "CRON_S3": ("cron", "s3"),
    "CRON_METRICS": ("cron", "metrics"),
    "RUN_METRICS_ON_STARTUP": ("cron", "run_metrics_on_startup"),
    "RUN_EXPORT_ON_STARTUP": ("cron", "run_export_on_startup"),
    "S3_ENDPOINT": ("s3", "endpoint"),
    "S3_BUCKET": ("s3", "bucket"),
    "S3_REGION": ("s3", "region"),
    "METRICS_ENABLED": (None, "metrics_enabled"),
}

_REQUIRED_SECRETS = (
    ("RESTIC_PASSWORD", "restic", "password"),
    ("S3_ACCESS_KEY", "s3", "access_key"),
    ("S3_SECRET_KEY", "s3", "secret_key"),
    ("S3_PASSPHRASE", "s3", "passphrase"),
)


def read_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Read the YAML config file.

    Args:
        path: Config file path. A missing file yields an empty config.

    Returns:
        Dict[str, Any]: Parsed mapping.

    Raises:
        ConfigurationError: When the file cannot be parsed.
    """

    if not path or not os.path.exists(path):
        logger.debug("No config file found at %s; using environment only", path)
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Error reading config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
    return data


def _merge_settings(raw: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    """Overlay environment settings onto the raw YAML mapping.

    Args:
        raw: Parsed YAML mapping.
        settings: Environment settings.

    Returns:
        Dict[str, Any]: Merged mapping ready for validation.
    """

    merged: Dict[str, Any] = {key: (dict(value) if isinstance(value, dict) else value) for key, value in raw.items()}

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = getattr(settings, env_name, None)
        if value is None:
            continue
        if section is None:
            merged[key] = value
        else:
            merged.setdefault(section, {})[key] = value

    secret_getters = {
        "RESTIC_PASSWORD": settings.get_restic_password,
        "S3_ACCESS_KEY": settings.get_s3_access_key,
        "S3_SECRET_KEY": settings.get_s3_secret_key,
        "S3_PASSPHRASE": settings.get_s3_passphrase,
    }
    for env_name, section, key in _REQUIRED_SECRETS:
        value = secret_getters[env_name]()
        if value:
            merged.setdefault(section, {})[key] = value

    return merged


def _check_required_secrets(merged: Dict[str, Any]) -> None:
    """Fail with a readable message naming the first missing secret.

    Args:
        merged: Merged configuration mapping.

    Raises:
        ConfigurationError: When a required secret is missing.
    """

    for env_name, section, key in _REQUIRED_SECRETS:
        value = (merged.get(section) or {}).get(key)
        if not str(value or "").strip():
            raise ConfigurationError(f"{env_name} is required")

    for key in ("endpoint", "bucket"):
        if not str((merged.get("s3") or {}).get(key) or "").strip():
            raise ConfigurationError(f"S3_{key.upper()} is required")


def _check_backup_paths(config: AppConfig) -> None:
    """Validate filesystem references of the backup units.

    Args:
        config: Validated configuration.

    Raises:
        ConfigurationError: When an exclude file does not exist.
    """

    for backup in config.backups:
        if backup.exclude_file and not Path(backup.exclude_file).exists():
            raise ConfigurationError(f"exclude file does not exist: {backup.exclude_file}")
        if not Path(backup.path).exists():
            logger.warning("Backup path does not exist yet (backup=%s, path=%s)", backup.name, backup.path)


def build_config(raw: Dict[str, Any]) -> AppConfig:
    """Validate a raw configuration mapping.

    Args:
        raw: Mapping in the YAML layout.

    Returns:
        AppConfig: Validated configuration.

    Raises:
        ConfigurationError: When validation fails.
    """

    _check_required_secrets(raw)
    try:
        config = AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    _check_backup_paths(config)
    return config


def load_config(settings: Optional[Settings] = None, *, config_file: Optional[str] = None) -> AppConfig:
    """Load, merge and validate the service configuration.

    Args:
        settings: Environment settings; a fresh `Settings()` when omitted.
        config_file: Override for the YAML file path.

    Returns:
        AppConfig: Validated configuration.

    Raises:
        ConfigurationError: When the configuration is missing values or invalid.
    """

    settings = settings or Settings()
    raw = read_config_file(config_file or settings.CONFIG_FILE)
    config = build_config(_merge_settings(raw, settings))

    logger.info(
        "Configuration loaded (repository=%s, bucket=%s, backups=%s)",
        config.restic.repository,
        config.s3.bucket,
        config.backup_names,
    )
    return config
