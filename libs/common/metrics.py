"""Metrics collection for batch scoring components.

Provides a thin convenience wrapper around ``prometheus_client`` so the
adapter and the HTTP service record registrations, jobs and staging traffic
with consistent label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for tests)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for scoring components.

    Parameters
    - service_name: Logical component name, kept for diagnostics
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.registrations = Counter(
            'scoring_registrations_total',
            'Scoring function registrations by outcome',
            ['scoring_service', 'outcome'],
            registry=self.registry
        )

        self.jobs = Counter(
            'scoring_jobs_total',
            'Batch scoring jobs by terminal status',
            ['scoring_service', 'status', 'error_category'],
            registry=self.registry
        )

        self.job_duration = Histogram(
            'scoring_job_duration_seconds',
            'Batch scoring job duration',
            ['scoring_service'],
            buckets=(0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 600.0, 3600.0),
            registry=self.registry
        )

        self.staged_bytes = Counter(
            'scoring_staged_bytes_total',
            'Bytes moved between storage and the staging area',
            ['direction'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_registration(self, scoring_service: str, outcome: str) -> None:
        """Record a registration attempt (``published`` or ``invalid``)."""
        self.registrations.labels(scoring_service=scoring_service, outcome=outcome).inc()

    def record_job(
        self,
        scoring_service: str,
        status: str,
        duration: float,
        error_category: str = "",
    ) -> None:
        """Record a finished batch scoring job."""
        self.jobs.labels(
            scoring_service=scoring_service,
            status=status,
            error_category=error_category,
        ).inc()
        self.job_duration.labels(scoring_service=scoring_service).observe(duration)

    def record_staged_bytes(self, direction: str, size: int) -> None:
        """Record bytes downloaded (``in``) or committed (``out``)."""
        if size > 0:
            self.staged_bytes.labels(direction=direction).inc(size)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the process-wide metrics collector.

    Returns a singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
