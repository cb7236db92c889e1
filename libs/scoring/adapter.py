"""Scoring adapter: registration and invocation of batch scoring functions.

``ScoringAdapter.register`` checks a user function against its declared
schema and produces the deployable descriptor pair. ``ScoringAdapter.invoke``
runs one batch job:

1. validate the request names against the schema
2. check every output destination can be written
3. resolve inputs (local paths are used in place, remote references are
   downloaded into a per-job staging directory) and coerce primitives
4. call the function with staging paths for its outputs
5. commit every staged output to its destination, or none of them

Errors are recorded on the job, logged, forwarded as telemetry when a
publisher is configured, and re-raised to the caller. Nothing is retried.
"""

import inspect
import re
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

import structlog

from libs.common.config import BatchScoringConfig
from libs.common.events import EventPublisher, create_event_publisher
from libs.common.logging import job_context, log_performance
from libs.common.metrics import MetricsCollector, get_metrics_collector
from .descriptors import DriverDescriptor, RegistrationResult, SchemaManifest, render_driver
from .errors import (
    DataAccessError,
    ExecutionError,
    RegistrationStateError,
    SchemaMismatchError,
    ScoringError,
    StorageError,
)
from .factory import create_storage_client_from_config
from .schema import ParameterSchema, SchemaEntry, find_schema_problems
from .storage import LocalStorageClient, StorageClient

logger = structlog.get_logger("scoring.adapter")

SERVICE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class RegistrationState(str, Enum):
    """Lifecycle of a registration. There is no transition back to DRAFT."""
    DRAFT = "draft"
    PUBLISHED = "published"
    INVALID = "invalid"


class JobStatus(str, Enum):
    """States the adapter can observe for a job."""
    SUBMITTED = "submitted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ScoringRequest:
    """Values for one invocation, keyed by declared name.

    Inputs and parameters are required. Output names are optional and, when
    present, map to the destination the output should be written to.
    """
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InvocationResult:
    """Status of one scoring job."""
    job_id: str
    service_name: str
    status: JobStatus = JobStatus.SUBMITTED
    outputs: Dict[str, str] = field(default_factory=dict)
    error_category: Optional[str] = None
    error_message: Optional[str] = None
    submitted_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return end - self.submitted_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "service_name": self.service_name,
            "status": self.status.value,
            "outputs": dict(self.outputs),
            "error_category": self.error_category,
            "error_message": self.error_message,
            "submitted_at": self.submitted_at,
            "finished_at": self.finished_at,
            "duration_seconds": self.duration_seconds,
        }


class Registration:
    """A scoring function bound to its schema.

    Holds the function for the lifetime of the registration. ``result`` is
    set once the registration is published.
    """

    def __init__(self, function: Callable, service_name: str, dependencies: Sequence[str]):
        self.function = function
        self.service_name = service_name
        self.dependencies = list(dependencies)
        self.state = RegistrationState.DRAFT
        self.schema: Optional[ParameterSchema] = None
        self.result: Optional[RegistrationResult] = None
        self.problems: List[Tuple[str, str]] = []

    @property
    def driver_id(self) -> Optional[str]:
        return self.result.driver.driver_id if self.result else None

    def _publish(self, schema: ParameterSchema, result: RegistrationResult) -> None:
        if self.state != RegistrationState.DRAFT:
            raise RegistrationStateError(f"Registration '{self.service_name}' is already {self.state.value}")
        self.schema = schema
        self.result = result
        self.state = RegistrationState.PUBLISHED

    def _invalidate(self, problems: List[Tuple[str, str]]) -> None:
        if self.state != RegistrationState.DRAFT:
            raise RegistrationStateError(f"Registration '{self.service_name}' is already {self.state.value}")
        self.problems = problems
        self.state = RegistrationState.INVALID

    def __repr__(self) -> str:
        return f"Registration(service_name={self.service_name!r}, state={self.state.value})"


def entry_point_for(function: Callable) -> Tuple[str, bool]:
    """``module:qualname`` for a function and whether a driver can import it."""
    module = getattr(function, "__module__", None) or "__main__"
    qualname = getattr(function, "__qualname__", None) or getattr(function, "__name__", repr(function))
    importable = module != "__main__" and "<" not in qualname
    return f"{module}:{qualname}", importable


def _signature_problems(function: Callable, declared: Sequence[str]) -> Tuple[List[str], List[Tuple[str, str]]]:
    """Compare a function's named arguments to declared schema names.

    Returns the bindable argument names in call order and every problem.
    """
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError) as e:
        return [], [("function", f"signature cannot be inspected: {e}")]

    arguments: List[str] = []
    problems: List[Tuple[str, str]] = []
    for parameter in signature.parameters.values():
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            problems.append((f"*{parameter.name}", "variadic arguments cannot be bound by name"))
        elif parameter.kind == inspect.Parameter.VAR_KEYWORD:
            problems.append((f"**{parameter.name}", "variadic arguments cannot be bound by name"))
        elif parameter.kind == inspect.Parameter.POSITIONAL_ONLY:
            problems.append((parameter.name, "positional-only arguments cannot be bound by name"))
        else:
            arguments.append(parameter.name)

    declared_set = set(declared)
    for name in arguments:
        if name not in declared_set:
            problems.append((name, "function argument has no schema entry"))
    argument_set = set(arguments)
    for name in declared:
        if name not in argument_set:
            problems.append((name, "schema entry has no matching function argument"))

    return arguments, problems


def _basename(reference: str, fallback: str) -> str:
    path = urlparse(str(reference)).path if "://" in str(reference) else str(reference)
    name = Path(path.rstrip("/")).name
    return name or fallback


class ScoringAdapter:
    """Registers scoring functions and runs batch jobs against them.

    Parameters
    - storage_client: resolves input references and commits outputs
    - output_root: base location for outputs the request does not name
    - staging_dir: parent directory for per-job staging areas (system
      temporary directory when empty)
    - event_publisher: optional telemetry publisher
    - metrics: metrics collector; the process-wide one by default
    - max_finished_jobs: finished jobs kept in the status table; the oldest
      are dropped first
    """

    def __init__(
        self,
        storage_client: Optional[StorageClient] = None,
        output_root: Optional[str] = None,
        staging_dir: Optional[str] = None,
        event_publisher: Optional[EventPublisher] = None,
        metrics: Optional[MetricsCollector] = None,
        max_finished_jobs: int = 1000,
    ):
        self.storage_client = storage_client or LocalStorageClient()
        self.output_root = output_root or str(Path(tempfile.gettempdir()) / "batch-scoring" / "outputs")
        self.staging_dir = staging_dir or None
        self.event_publisher = event_publisher
        self.metrics = metrics or get_metrics_collector("batch-scoring")
        self.max_finished_jobs = max_finished_jobs

        self._registrations: Dict[str, Registration] = {}
        self._jobs: Dict[str, InvocationResult] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: BatchScoringConfig) -> "ScoringAdapter":
        """Build an adapter wired to the configured storage and telemetry."""
        publisher = None
        if config.ml_batch_events_enabled:
            publisher = create_event_publisher(config.ml_redis_url)
        return cls(
            storage_client=create_storage_client_from_config(config),
            output_root=config.ml_batch_output_root,
            staging_dir=config.ml_batch_staging_dir,
            event_publisher=publisher,
            max_finished_jobs=config.ml_batch_max_finished_jobs,
        )

    # Registration -------------------------------------------------------

    def register(
        self,
        function: Callable,
        input_schema: Sequence[SchemaEntry],
        output_schema: Sequence[SchemaEntry],
        parameters: Sequence[SchemaEntry] = (),
        dependencies: Sequence[str] = (),
        service_name: str = "",
    ) -> RegistrationResult:
        """Bind ``function`` to its schema and produce the descriptor pair.

        Every mismatch between the function's arguments and the declared
        names is collected and raised together as ``SchemaMismatchError``;
        the error carries the now-invalid registration.
        """
        registration = Registration(function, service_name, dependencies)
        input_schema = tuple(input_schema)
        output_schema = tuple(output_schema)
        parameters = tuple(parameters)

        problems: List[Tuple[str, str]] = []
        if not service_name or not SERVICE_NAME_PATTERN.match(service_name):
            problems.append(("service_name", f"'{service_name}' is not a valid service name"))
        if not callable(function):
            problems.append(("function", "is not callable"))
        else:
            declared = [entry.name for entry in (*input_schema, *output_schema, *parameters)]
            problems.extend(find_schema_problems(input_schema, output_schema, parameters))
            arguments, signature_problems = _signature_problems(function, declared)
            problems.extend(signature_problems)

        if problems:
            registration._invalidate(problems)
            self.metrics.record_registration(service_name, RegistrationState.INVALID.value)
            error = SchemaMismatchError(
                [name for name, _ in problems],
                [f"{name}: {reason}" for name, reason in problems],
                registration=registration,
            )
            logger.error(
                "Registration rejected",
                service_name=service_name,
                mismatched=error.names,
                details=error.details,
            )
            raise error

        schema = ParameterSchema(inputs=input_schema, outputs=output_schema, parameters=parameters)
        entry_point, importable = entry_point_for(function)
        driver = DriverDescriptor(
            service_name=service_name,
            entry_point=entry_point,
            importable=importable,
            arguments=arguments,
            dependencies=list(dependencies),
        )
        driver = driver.model_copy(update={"script": render_driver(driver)})
        result = RegistrationResult(
            driver=driver,
            manifest=SchemaManifest(service_name=service_name, parameter_schema=schema),
        )

        registration._publish(schema, result)
        with self._lock:
            self._registrations[driver.driver_id] = registration

        self.metrics.record_registration(service_name, RegistrationState.PUBLISHED.value)
        logger.info(
            "Scoring function registered",
            service_name=service_name,
            driver_id=driver.driver_id,
            entry_point=entry_point,
            importable=importable,
            arguments=arguments,
        )
        if not importable:
            logger.warning(
                "Entry point cannot be imported by a generated driver",
                service_name=service_name,
                entry_point=entry_point,
            )
        self._emit(lambda publisher: publisher.publish_service_registered(service_name, driver.driver_id))
        return result

    def get_registration(self, registration: Union[Registration, RegistrationResult, str]) -> Registration:
        """Find the ``Registration`` behind a result, driver id or itself."""
        if isinstance(registration, Registration):
            return registration
        driver_id = registration.driver.driver_id if isinstance(registration, RegistrationResult) else registration
        with self._lock:
            found = self._registrations.get(driver_id)
        if found is None:
            raise RegistrationStateError(f"Driver '{driver_id}' was not registered with this adapter")
        return found

    def unregister(self, registration: Union[Registration, RegistrationResult, str]) -> Optional[Registration]:
        """Forget a registration so it can no longer be invoked.

        Jobs already running keep their own reference and finish normally.
        """
        if isinstance(registration, Registration):
            driver_id = registration.driver_id
        elif isinstance(registration, RegistrationResult):
            driver_id = registration.driver.driver_id
        else:
            driver_id = registration
        with self._lock:
            removed = self._registrations.pop(driver_id, None)
        if removed is not None:
            logger.info("Scoring function unregistered", service_name=removed.service_name, driver_id=driver_id)
        return removed

    # Invocation ---------------------------------------------------------

    def invoke(
        self,
        registration: Union[Registration, RegistrationResult, str],
        request: Union[ScoringRequest, Mapping[str, Any]],
    ) -> InvocationResult:
        """Run one batch job and return its result once outputs are committed.

        Raises ``SchemaMismatchError`` for bad request names,
        ``DataAccessError`` when a location cannot be read or written and
        ``ExecutionError`` when the function fails. Any other unexpected
        failure is reported as ``ExecutionError`` too. The failed
        ``InvocationResult`` is attached to the error as ``result``.
        """
        registration = self.get_registration(registration)
        if registration.state != RegistrationState.PUBLISHED:
            raise RegistrationStateError(
                f"Registration '{registration.service_name}' is {registration.state.value}, not published"
            )
        if not isinstance(request, ScoringRequest):
            request = ScoringRequest(dict(request))

        result = InvocationResult(job_id=str(uuid.uuid4()), service_name=registration.service_name)
        with self._lock:
            self._jobs[result.job_id] = result

        with job_context(result.job_id, registration.service_name):
            logger.info("Scoring job submitted", names=sorted(request.values))
            staging: Optional[Path] = None
            try:
                staging = self._create_staging(registration.service_name, result.job_id)
                outputs = self._run(registration, request, result.job_id, staging)
            except ScoringError as e:
                self._finish_failed(result, e)
                raise
            except Exception as e:
                error = ExecutionError(registration.service_name, f"Unexpected {type(e).__name__}: {e}")
                self._finish_failed(result, error)
                raise error from e
            finally:
                if staging is not None:
                    shutil.rmtree(staging, ignore_errors=True)

            return self._finish_succeeded(result, outputs)

    def _create_staging(self, service_name: str, job_id: str) -> Path:
        try:
            if self.staging_dir:
                Path(self.staging_dir).mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=f"{service_name}-{job_id[:8]}-", dir=self.staging_dir))
        except OSError as e:
            raise DataAccessError("staging_dir", self.staging_dir or tempfile.gettempdir(), str(e)) from e

    def _run(
        self,
        registration: Registration,
        request: ScoringRequest,
        job_id: str,
        staging: Path,
    ) -> Dict[str, str]:
        schema = registration.schema
        self._validate_request(schema, request)

        destinations = self._resolve_destinations(registration, request, job_id)
        arguments = self._resolve_arguments(schema, request, staging)

        staged_outputs: Dict[str, Path] = {}
        for name, destination in destinations.items():
            staged = staging / "outputs" / name / _basename(destination, name)
            staged.parent.mkdir(parents=True, exist_ok=True)
            staged_outputs[name] = staged
            arguments[name] = str(staged)

        started = time.time()
        try:
            registration.function(**arguments)
        except Exception as e:
            raise ExecutionError(registration.service_name, f"{type(e).__name__}: {e}") from e
        log_performance(
            "scoring_function",
            (time.time() - started) * 1000,
            scoring_service=registration.service_name,
        )

        missing = [name for name, path in staged_outputs.items() if not path.exists()]
        if missing:
            raise ExecutionError(
                registration.service_name,
                f"Function finished without writing output(s): {', '.join(sorted(missing))}",
            )

        self._commit_outputs(staged_outputs, destinations, staging)
        return destinations

    def _validate_request(self, schema: ParameterSchema, request: ScoringRequest) -> None:
        required = set(schema.input_names) | set(schema.parameter_names)
        allowed = required | set(schema.output_names)
        provided = set(request.values)

        missing = sorted(required - provided)
        unknown = sorted(provided - allowed)
        if missing or unknown:
            details = [f"{name}: missing from request" for name in missing]
            details.extend(f"{name}: not declared by the service" for name in unknown)
            raise SchemaMismatchError(missing + unknown, details)

    def _resolve_destinations(
        self,
        registration: Registration,
        request: ScoringRequest,
        job_id: str,
    ) -> Dict[str, str]:
        destinations: Dict[str, str] = {}
        for name in registration.schema.output_names:
            destination = request.values.get(name)
            if destination is None:
                destination = "/".join([self.output_root.rstrip("/"), registration.service_name, job_id, name])
            destination = str(destination)
            try:
                self.storage_client.check_writable(destination)
            except StorageError as e:
                raise DataAccessError(name, destination, str(e)) from e
            destinations[name] = destination
        return destinations

    def _resolve_arguments(
        self,
        schema: ParameterSchema,
        request: ScoringRequest,
        staging: Path,
    ) -> Dict[str, Any]:
        arguments: Dict[str, Any] = {}
        for entry in (*schema.inputs, *schema.parameters):
            value = request.values[entry.name]
            if entry.is_reference:
                arguments[entry.name] = self._resolve_reference(entry, value, staging)
            else:
                try:
                    arguments[entry.name] = entry.coerce(value)
                except (TypeError, ValueError) as e:
                    raise DataAccessError(entry.name, value, str(e)) from e
        return arguments

    def _resolve_reference(self, entry: SchemaEntry, value: Any, staging: Path) -> str:
        if not isinstance(value, (str, Path)) or not str(value):
            raise DataAccessError(entry.name, value, "expected a path or URI")
        reference = str(value)

        try:
            if not self.storage_client.exists(reference):
                raise DataAccessError(entry.name, reference, "location does not exist")
            local = self.storage_client.local_path(reference)
            if local is not None:
                return str(local)

            target = staging / "inputs" / entry.name / _basename(reference, entry.name)
            size = self.storage_client.download(reference, target)
        except StorageError as e:
            raise DataAccessError(entry.name, reference, str(e)) from e

        self.metrics.record_staged_bytes("in", size)
        logger.info("Staged remote input", parameter=entry.name, reference=reference, bytes=size)
        return str(target)

    def _commit_outputs(self, staged: Dict[str, Path], destinations: Dict[str, str], staging: Path) -> None:
        previous = self._preserve_destinations(destinations, staging)
        touched: List[str] = []
        for name, path in staged.items():
            destination = destinations[name]
            touched.append(name)
            try:
                size = self.storage_client.upload(path, destination)
            except StorageError as e:
                self._rollback(touched, destinations, previous)
                raise DataAccessError(name, destination, str(e)) from e
            self.metrics.record_staged_bytes("out", size)

    def _preserve_destinations(self, destinations: Dict[str, str], staging: Path) -> Dict[str, Path]:
        """Copy destinations that already hold data so a rollback can restore them."""
        previous: Dict[str, Path] = {}
        for name, destination in destinations.items():
            try:
                if not self.storage_client.exists(destination):
                    continue
                copy = staging / "previous" / name / _basename(destination, name)
                self.storage_client.download(destination, copy)
            except StorageError as e:
                raise DataAccessError(name, destination, str(e)) from e
            previous[name] = copy
        return previous

    def _rollback(self, touched: List[str], destinations: Dict[str, str], previous: Dict[str, Path]) -> None:
        for name in touched:
            destination = destinations[name]
            try:
                self.storage_client.delete(destination)
                if name in previous:
                    self.storage_client.upload(previous[name], destination)
            except StorageError as e:
                logger.error("Failed to roll back output", parameter=name, destination=destination, error=str(e))

    # Job status ---------------------------------------------------------

    def _finish_succeeded(self, result: InvocationResult, outputs: Dict[str, str]) -> InvocationResult:
        with self._lock:
            result.outputs = dict(outputs)
            result.status = JobStatus.SUCCEEDED
            result.finished_at = time.time()
            snapshot = replace(result, outputs=dict(result.outputs))
            self._prune_finished_jobs()

        duration = result.duration_seconds
        self.metrics.record_job(result.service_name, result.status.value, duration)
        logger.info("Scoring job succeeded", outputs=result.outputs, duration_seconds=duration)
        self._emit(lambda publisher: publisher.publish_job_outcome(
            service_name=result.service_name,
            job_id=result.job_id,
            outcome=JobStatus.SUCCEEDED.value,
            message=f"{len(outputs)} output(s) written",
            duration_ms=duration * 1000,
        ))
        return snapshot

    def _finish_failed(self, result: InvocationResult, error: ScoringError) -> None:
        with self._lock:
            result.status = JobStatus.FAILED
            result.error_category = error.category
            result.error_message = error.message
            result.finished_at = time.time()
            snapshot = replace(result, outputs=dict(result.outputs))
            self._prune_finished_jobs()
        error.result = snapshot

        duration = result.duration_seconds
        self.metrics.record_job(result.service_name, result.status.value, duration, error.category)
        logger.error(
            "Scoring job failed",
            error_category=error.category,
            error=error.message,
            duration_seconds=duration,
        )
        self._emit(lambda publisher: publisher.publish_job_outcome(
            service_name=result.service_name,
            job_id=result.job_id,
            outcome=JobStatus.FAILED.value,
            message=error.message,
            error_category=error.category,
            duration_ms=duration * 1000,
        ))

    def get_job_status(self, job_id: str) -> Optional[InvocationResult]:
        """Snapshot of a job's status, or ``None`` for unknown ids."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            return replace(job, outputs=dict(job.outputs))

    def list_jobs(self, service_name: Optional[str] = None) -> List[InvocationResult]:
        """Snapshots of tracked jobs, oldest first."""
        with self._lock:
            jobs = [
                replace(job, outputs=dict(job.outputs))
                for job in self._jobs.values()
                if service_name is None or job.service_name == service_name
            ]
        return sorted(jobs, key=lambda job: job.submitted_at)

    def _prune_finished_jobs(self) -> None:
        # Caller holds self._lock.
        finished = [job for job in self._jobs.values() if job.status != JobStatus.SUBMITTED]
        excess = len(finished) - self.max_finished_jobs
        if excess <= 0:
            return
        finished.sort(key=lambda job: job.finished_at or job.submitted_at)
        for job in finished[:excess]:
            del self._jobs[job.job_id]

    def clear_jobs(self) -> int:
        """Drop every finished job from the status table. Returns how many."""
        with self._lock:
            finished = [job_id for job_id, job in self._jobs.items() if job.status != JobStatus.SUBMITTED]
            for job_id in finished:
                del self._jobs[job_id]
        return len(finished)

    def forget_job(self, job_id: str) -> Optional[InvocationResult]:
        """Drop a finished job from the status table and return it."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status == JobStatus.SUBMITTED:
                return None
            return self._jobs.pop(job_id)

    # Telemetry ----------------------------------------------------------

    def _emit(self, send: Callable[[EventPublisher], None]) -> None:
        if self.event_publisher is None:
            return
        try:
            send(self.event_publisher)
        except Exception as e:
            logger.error("Failed to forward telemetry event", error=str(e))
