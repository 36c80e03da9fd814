"""Runtime configuration, env-driven.

Reads from a ``.env`` file and ``CONTRACTFORGE_*`` environment variables via
pydantic-settings.  Import the shared instance as
``from contractforge.config import config``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60
ONE_HOUR_SECONDS = 60 * 60


class ForgeConfig(BaseSettings):
    """Pipeline configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export CONTRACTFORGE_ENVIRONMENT=staging
        export CONTRACTFORGE_STORAGE_BACKEND=s3
        export CONTRACTFORGE_S3_BUCKET=contract-artifacts
        export CONTRACTFORGE_BATCH_SIZE=25
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CONTRACTFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Object storage
    storage_backend: Literal["local", "s3"] = "local"
    storage_path: Path = Path(".contractforge/objects")
    s3_bucket: str = ""
    aws_region: str = "us-east-1"
    signing_secret: str = "contractforge-dev-secret"

    # Signed URL lifetimes; contract links are deliberately longer-lived
    contract_url_ttl_seconds: int = SEVEN_DAYS_SECONDS
    generic_url_ttl_seconds: int = ONE_HOUR_SECONDS

    # Bulk operations
    batch_size: int = 10
    batch_delay_seconds: float = 0.01

    # Retry policy for storage and network calls
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_backoff_factor: float = 2.0

    # Local state
    generation_log_path: Path = Path(".contractforge/generation_log.db")
    audit_path: Path = Path(".contractforge/audit")
    session_path: Path = Path(".contractforge/session/assignments.json")
    records_path: Path = Path(".contractforge/records")

    # Notifications
    # Sent through AWS SES in aws_region
    mail_sender: str = "contracts@localhost"

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton
config = ForgeConfig()
