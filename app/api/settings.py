"""Environment-driven settings for the backup service.

Values are read from the process environment and an optional `.env` file.
Every secret can alternatively be provided through a `<NAME>_FILE` variable
pointing at a file that contains the value (Docker/Kubernetes secrets).

Backup-related values default to None here so that the YAML config file can
provide them; `models.config.load_config` applies the final defaults.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def read_secret_file(path: Optional[str]) -> str:
    """Read a secret value from a file.

    Args:
        path: File path (may be empty).

    Returns:
        str: Stripped file content, or an empty string when the file is missing.
    """

    if not path or not os.path.exists(path):
        return ""
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()


class Settings(BaseSettings):
    """Process settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    IMAGE_TAG: str = "local"
    DEBUG: bool = False
    CONFIG_FILE: str = "config.yaml"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "/var/log/auto-restic"
    LOG_FILENAME: str = "auto-restic.log"

    # HTTP listener
    HTTP_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 2112
    SHUTDOWN_GRACE_SECONDS: float = 5.0

    # restic
    RESTIC_BINARY: str = "restic"
    RESTIC_REPOSITORY: Optional[str] = None
    RESTIC_PASSWORD: Optional[str] = None
    RESTIC_PASSWORD_FILE: Optional[str] = None
    RESTIC_KEEP_DAILY: Optional[int] = None
    RESTIC_KEEP_WEEKLY: Optional[int] = None
    RESTIC_KEEP_MONTHLY: Optional[int] = None

    # Cron expressions
    CRON_BACKUP: Optional[str] = None
    CRON_CHECK: Optional[str] = None
    CRON_PRUNE: Optional[str] = None
    CRON_S3: Optional[str] = None
    CRON_METRICS: Optional[str] = None
    RUN_METRICS_ON_STARTUP: Optional[bool] = None
    RUN_EXPORT_ON_STARTUP: Optional[bool] = None

    METRICS_ENABLED: Optional[bool] = None

    # Object storage
    S3_ACCESS_KEY: Optional[str] = None
    S3_ACCESS_KEY_FILE: Optional[str] = None
    S3_SECRET_KEY: Optional[str] = None
    S3_SECRET_KEY_FILE: Optional[str] = None
    S3_ENDPOINT: Optional[str] = None
    S3_BUCKET: Optional[str] = None
    S3_REGION: Optional[str] = None
    S3_PASSPHRASE: Optional[str] = None
    S3_PASSPHRASE_FILE: Optional[str] = None

    def _get_secret(self, name: str) -> Optional[str]:
        """Resolve a secret from its variable or its `_FILE` companion.

        Args:
            name: Setting name, e.g. "RESTIC_PASSWORD".

        Returns:
            Optional[str]: Secret value, or None when neither source is set.
        """

        value = getattr(self, name, None)
        if value:
            return value
        from_file = read_secret_file(getattr(self, f"{name}_FILE", None))
        return from_file or None

    def get_restic_password(self) -> Optional[str]:
        """Return the repository password."""

        return self._get_secret("RESTIC_PASSWORD")

    def get_s3_access_key(self) -> Optional[str]:
        """Return the object storage access key."""

        return self._get_secret("S3_ACCESS_KEY")

    def get_s3_secret_key(self) -> Optional[str]:
        """Return the object storage secret key."""

        return self._get_secret("S3_SECRET_KEY")

    def get_s3_passphrase(self) -> Optional[str]:
        """Return the archive encryption passphrase."""

        return self._get_secret("S3_PASSPHRASE")


settings = Settings()
