"""Common utilities shared across scoring components.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``events``: Redis pub/sub telemetry events and publisher.

Import pattern:
- from libs.common.config import BatchScoringConfig
- from libs.common.logging import configure_logging
"""
