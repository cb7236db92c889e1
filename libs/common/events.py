"""Telemetry events for batch scoring.

Scoring outcomes are forwarded to an external collector over Redis pub/sub.
Producers publish JSON payloads on namespaced channels derived from
``EventType``; whatever listens on the other side decides how events are
stored or displayed.

Key concepts
- "EventType" stable identifiers are versioned (``.v1`` suffix)
- ``EventPublisher`` composes channel names as ``{prefix}:{event_type}``
"""

import json
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

import redis
import structlog

logger = structlog.get_logger("events")


class EventType(Enum):
    """Event types emitted by the scoring adapter."""
    SERVICE_REGISTERED = "ml.scoring.service.registered.v1"
    JOB_SUCCEEDED = "ml.scoring.job.succeeded.v1"
    JOB_FAILED = "ml.scoring.job.failed.v1"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BaseEvent:
    """Base event class.

    Child events set their ``event_type`` in ``__post_init__`` and extend the
    payload with the fields relevant to them.
    """
    timestamp: int
    event_type: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class ServiceRegisteredEvent(BaseEvent):
    """Event emitted when a scoring function is published."""
    service_name: str
    driver_id: str
    outcome: str = "published"
    message: str = ""

    def __post_init__(self):
        self.event_type = EventType.SERVICE_REGISTERED.value
        if not self.timestamp:
            self.timestamp = _now_ms()


@dataclass
class ScoringJobEvent(BaseEvent):
    """Event emitted when a scoring job reaches a terminal state.

    ``outcome`` is ``succeeded`` or ``failed``; ``error_category`` is empty
    on success.
    """
    service_name: str
    job_id: str
    outcome: str
    message: str = ""
    error_category: str = ""
    duration_ms: float = 0.0

    def __post_init__(self):
        if self.outcome == "succeeded":
            self.event_type = EventType.JOB_SUCCEEDED.value
        else:
            self.event_type = EventType.JOB_FAILED.value
        if not self.timestamp:
            self.timestamp = _now_ms()


class EventPublisher:
    """Publishes events to Redis.

    Notes
    - Publishing retries with exponential backoff; the final failure is
      logged and re‑raised.
    - Messages are serialized as JSON to keep consumers language‑agnostic.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "ml_events",
        max_retries: int = 3,
        base_delay: float = 0.5,
    ):
        self.redis_client = redis.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.max_retries = max_retries
        self.base_delay = base_delay

    def channel_for(self, event: BaseEvent) -> str:
        return f"{self.channel_prefix}:{event.event_type}"

    def publish(self, event: BaseEvent) -> None:
        """Publish an event with retry logic.

        The channel is derived from the event's type to allow subscribers to
        filter efficiently without payload inspection.
        """
        channel = self.channel_for(event)
        message = event.to_json()

        for attempt in range(self.max_retries):
            try:
                self.redis_client.publish(channel, message)
                logger.info(
                    "Event published",
                    event_type=event.event_type,
                    channel=channel
                )
                return
            except redis.RedisError as e:
                if attempt == self.max_retries - 1:
                    logger.error(
                        "Failed to publish event after all retries",
                        event_type=event.event_type,
                        error=str(e)
                    )
                    raise

                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "Event publish failed, retrying",
                    event_type=event.event_type,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e)
                )
                time.sleep(delay)

    def publish_service_registered(self, service_name: str, driver_id: str) -> None:
        """Publish service registered event."""
        self.publish(ServiceRegisteredEvent(
            timestamp=_now_ms(),
            event_type="",
            service_name=service_name,
            driver_id=driver_id,
        ))

    def publish_job_outcome(
        self,
        service_name: str,
        job_id: str,
        outcome: str,
        message: str = "",
        error_category: str = "",
        duration_ms: float = 0.0,
    ) -> None:
        """Publish a job succeeded/failed event."""
        self.publish(ScoringJobEvent(
            timestamp=_now_ms(),
            event_type="",
            service_name=service_name,
            job_id=job_id,
            outcome=outcome,
            message=message,
            error_category=error_category,
            duration_ms=duration_ms,
        ))


def create_event_publisher(redis_url: str, channel_prefix: Optional[str] = None) -> EventPublisher:
    """Create an event publisher."""
    if channel_prefix:
        return EventPublisher(redis_url, channel_prefix=channel_prefix)
    return EventPublisher(redis_url)
