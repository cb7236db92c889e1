"""Exceptions raised by the scoring adapter.

Every error carries a stable ``category`` string so HTTP handlers, metrics
and telemetry events can report it without matching on class names.
Invocation-time errors also carry the failed ``InvocationResult`` as
``result`` once the adapter has recorded it.
"""

from typing import Any, Iterable, List, Optional


class ScoringError(Exception):
    """Base exception for scoring operations."""
    category = "scoring_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.result: Optional[Any] = None


class SchemaMismatchError(ScoringError):
    """Function arguments, schema entries or request names do not line up.

    ``names`` lists every offending name, not just the first one found.
    """
    category = "schema_mismatch"

    def __init__(self, names: Iterable[str], details: Optional[List[str]] = None, registration: Any = None):
        self.names = sorted(set(names))
        self.details = list(details or [])
        self.registration = registration
        summary = ", ".join(self.names)
        message = f"Schema mismatch for parameter(s): {summary}"
        if self.details:
            message = f"{message} ({'; '.join(self.details)})"
        super().__init__(message)


class DataAccessError(ScoringError):
    """A declared input or output location could not be read or written."""
    category = "data_access"

    def __init__(self, parameter: str, location: Any, reason: str):
        self.parameter = parameter
        self.location = location
        self.reason = reason
        super().__init__(f"Cannot access '{parameter}' at {location}: {reason}")


class ExecutionError(ScoringError):
    """The scoring function failed, or did not produce its declared outputs."""
    category = "execution"

    def __init__(self, service_name: str, message: str):
        self.service_name = service_name
        super().__init__(message)


class RegistrationStateError(ScoringError):
    """The registration is not in a state that allows the operation."""
    category = "registration_state"


class StorageError(Exception):
    """Raised by storage clients; the adapter wraps it in ``DataAccessError``."""
    pass
