"""Published service registry for the batch scoring service.

Loads every service directory under the artifact root, keeps the resulting
registrations, and runs jobs against them through one ``ScoringAdapter``.
A service that fails to load is reported in ``load_errors`` and skipped;
the other services stay available.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from libs.scoring.adapter import InvocationResult, ScoringAdapter, ScoringRequest
from libs.scoring.descriptors import RegistrationResult, iter_service_dirs
from libs.scoring.driver import load_registration
from libs.scoring.errors import RegistrationStateError, SchemaMismatchError

logger = structlog.get_logger("batch_scoring.service_registry")


class ServiceRegistry:
    """Published services keyed by name."""

    def __init__(self, adapter: ScoringAdapter, artifact_dir: str):
        self.adapter = adapter
        self.artifact_dir = Path(artifact_dir)
        self.services: Dict[str, RegistrationResult] = {}
        self.load_errors: Dict[str, str] = {}

    def load_all(self) -> int:
        """(Re)load every published service. Returns the number loaded."""
        services: Dict[str, RegistrationResult] = {}
        errors: Dict[str, str] = {}

        for service_dir in iter_service_dirs(self.artifact_dir):
            try:
                result = load_registration(service_dir, self.adapter)
            except (RegistrationStateError, SchemaMismatchError, ValueError, OSError) as e:
                errors[service_dir.name] = str(e)
                logger.error("Failed to load service", service_dir=str(service_dir), error=str(e))
                continue
            services[result.service_name] = result

        superseded = list(self.services.values())
        self.services = services
        self.load_errors = errors
        for result in superseded:
            self.adapter.unregister(result)
        logger.info(
            "Published services loaded",
            artifact_dir=str(self.artifact_dir),
            loaded=len(services),
            failed=len(errors),
        )
        return len(services)

    def get(self, service_name: str) -> Optional[RegistrationResult]:
        return self.services.get(service_name)

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {
                "service_name": name,
                "driver_id": result.driver.driver_id,
                "entry_point": result.driver.entry_point,
                "arguments": result.driver.arguments,
                "dependencies": result.driver.dependencies,
            }
            for name, result in sorted(self.services.items())
        ]

    def run_job(self, service_name: str, values: Dict[str, Any]) -> InvocationResult:
        """Run a job synchronously; errors propagate from the adapter.

        Raises ``KeyError`` for a service that is not (or no longer) loaded.
        """
        result = self.services.get(service_name)
        if result is None:
            raise KeyError(service_name)
        return self.adapter.invoke(result, ScoringRequest(values))

    def health_check(self) -> bool:
        return self.artifact_dir.is_dir()
