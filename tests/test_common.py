"""Tests for common utilities."""

import json
from unittest.mock import MagicMock

import pytest
import redis
import structlog

from libs.common.config import BaseConfig, BatchScoringConfig, get_config
from libs.common.events import (
    EventPublisher,
    EventType,
    ScoringJobEvent,
    ServiceRegisteredEvent,
)
from libs.common.logging import configure_logging, job_context


def test_config_loading():
    """Test configuration loading."""
    config = BaseConfig()
    assert config.ml_env == "local"
    assert config.ml_log_level == "INFO"
    assert config.ml_minio_endpoint == "http://localhost:9000"


def test_batch_scoring_config():
    """Test batch scoring configuration."""
    config = BatchScoringConfig()
    assert config.ml_batch_scoring_port == 9008
    assert config.ml_batch_storage_backend == "local"
    assert config.ml_batch_events_enabled is False
    assert config.ml_batch_max_finished_jobs == 1000


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("ML_BATCH_OUTPUT_ROOT", "/data/outputs")
    monkeypatch.setenv("ML_BATCH_EVENTS_ENABLED", "true")
    config = get_config("batch-scoring")
    assert isinstance(config, BatchScoringConfig)
    assert config.ml_batch_output_root == "/data/outputs"
    assert config.ml_batch_events_enabled is True


def test_unknown_config_falls_back_to_base():
    assert type(get_config("unknown")) is BaseConfig


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json")


def test_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        configure_logging("test-service", "LOUD", "json")


def test_job_context_binds_and_restores():
    structlog.contextvars.clear_contextvars()
    with job_context("job-1", "churn-batch"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["job_id"] == "job-1"
        assert bound["scoring_service"] == "churn-batch"
    assert "job_id" not in structlog.contextvars.get_contextvars()


def test_metrics_collector(metrics):
    """Test metrics collector."""
    assert metrics.service_name == "test-batch-scoring"

    metrics.record_http_request("GET", "/health", 200, 0.1)
    metrics.record_registration("churn-batch", "published")
    metrics.record_job("churn-batch", "failed", 0.5, "data_access")
    metrics.record_staged_bytes("in", 128)

    output = metrics.get_metrics()
    assert isinstance(output, str)
    assert "http_requests_total" in output
    assert metrics.registry.get_sample_value(
        "scoring_jobs_total",
        {"scoring_service": "churn-batch", "status": "failed", "error_category": "data_access"},
    ) == 1.0
    assert metrics.registry.get_sample_value("scoring_staged_bytes_total", {"direction": "in"}) == 128.0


def test_job_event_type_follows_outcome():
    succeeded = ScoringJobEvent(timestamp=0, event_type="", service_name="s", job_id="j", outcome="succeeded")
    failed = ScoringJobEvent(timestamp=0, event_type="", service_name="s", job_id="j", outcome="failed")

    assert succeeded.event_type == EventType.JOB_SUCCEEDED.value
    assert failed.event_type == EventType.JOB_FAILED.value
    assert succeeded.timestamp > 0


def test_event_publisher_publishes_json():
    """Test event publisher."""
    publisher = EventPublisher("redis://localhost:6379")
    publisher.redis_client = MagicMock()
    assert publisher.channel_prefix == "ml_events"

    publisher.publish_job_outcome(
        service_name="churn-batch",
        job_id="job-1",
        outcome="failed",
        message="boom",
        error_category="execution",
    )

    channel, message = publisher.redis_client.publish.call_args.args
    assert channel == "ml_events:ml.scoring.job.failed.v1"
    payload = json.loads(message)
    assert payload["service_name"] == "churn-batch"
    assert payload["outcome"] == "failed"
    assert payload["error_category"] == "execution"


def test_event_publisher_retries_then_raises():
    publisher = EventPublisher("redis://localhost:6379", base_delay=0.0)
    publisher.redis_client = MagicMock()
    publisher.redis_client.publish.side_effect = redis.ConnectionError("down")

    event = ServiceRegisteredEvent(timestamp=0, event_type="", service_name="s", driver_id="d")
    with pytest.raises(redis.ConnectionError):
        publisher.publish(event)
    assert publisher.redis_client.publish.call_count == 3
