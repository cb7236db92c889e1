"""Configuration management for batch scoring components.

This module centralizes environment-driven configuration for the scoring
adapter, the batch scoring service and the command-line scripts. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly‑typed settings with sensible defaults
- One place to discover commonly used environment variables
- Small service‑specific subclasses to keep concerns clear

Usage
- Inject the appropriate config in your entrypoint:
  ``config = BatchScoringConfig()``
- Or select dynamically: ``config = get_config("batch-scoring")``
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class for all components.

    Field names double as environment variable names (case-insensitive), so
    ``ml_redis_url`` is read from ``ML_REDIS_URL``.

    Notes
    - Add new shared settings here so downstream services inherit them.
    - Prefer declaring a field over reading ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ml_env: str = Field(default="local")

    # Redis (telemetry events)
    ml_redis_url: str = Field(default="redis://localhost:6379")

    # MinIO / S3-compatible object storage
    ml_minio_endpoint: str = Field(default="http://localhost:9000")
    ml_minio_access_key: str = Field(default="minioadmin")
    ml_minio_secret_key: str = Field(default="minioadmin123")
    ml_minio_region: str = Field(default="")

    # Logging
    ml_log_level: str = Field(default="INFO")
    ml_log_format: str = Field(default="json")


class BatchScoringConfig(BaseConfig):
    """Configuration for the batch scoring adapter and service.

    Paths default under ``/tmp/batch-scoring`` so a local run works without
    any setup; deployments point them at mounted volumes.
    """

    ml_batch_scoring_port: int = Field(default=9008)
    ml_batch_artifact_dir: str = Field(default="/tmp/batch-scoring/artifacts")
    ml_batch_output_root: str = Field(default="/tmp/batch-scoring/outputs")
    ml_batch_staging_dir: str = Field(default="")
    ml_batch_events_enabled: bool = Field(default=False)
    ml_batch_storage_backend: str = Field(default="local")
    ml_batch_max_finished_jobs: int = Field(default=1000)


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific component.

    Parameters
    - service_name: ``batch-scoring`` or anything else for ``BaseConfig``

    Returns
    - A concrete ``BaseConfig`` subclass pre‑wired to read the right env vars.
    """
    config_map = {
        "batch-scoring": BatchScoringConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()

