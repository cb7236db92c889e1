"""Runtime side of a published service.

Generated ``driver.py`` scripts call ``run_driver``; the batch scoring
service and ``scripts/run_batch_job.py`` call ``load_registration`` directly.
Loading imports the descriptor's entry point and registers it again with the
schema from the manifest, so the same name checks apply as at publish time.
"""

import argparse
import importlib
import json
import sys
from pathlib import Path
from typing import Callable, List, Optional, Union

import structlog

from libs.common.config import BatchScoringConfig
from libs.common.logging import configure_logging
from .adapter import ScoringAdapter, ScoringRequest
from .descriptors import RegistrationResult, load_artifacts
from .errors import RegistrationStateError, ScoringError

logger = structlog.get_logger("scoring.driver")


def import_entry_point(entry_point: str) -> Callable:
    """Import ``module:qualname`` and return the callable it names."""
    module_name, _, qualname = entry_point.partition(":")
    if not module_name or not qualname:
        raise RegistrationStateError(f"Malformed entry point '{entry_point}'")
    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise RegistrationStateError(f"Cannot import '{module_name}': {e}") from e

    for attribute in qualname.split("."):
        try:
            target = getattr(target, attribute)
        except AttributeError as e:
            raise RegistrationStateError(f"'{entry_point}' does not exist") from e
    if not callable(target):
        raise RegistrationStateError(f"'{entry_point}' is not callable")
    return target


def load_registration(
    service_dir: Union[str, Path],
    adapter: ScoringAdapter,
) -> RegistrationResult:
    """Register the function described by a published service directory."""
    published = load_artifacts(service_dir)
    descriptor = published.driver
    if not descriptor.importable:
        raise RegistrationStateError(
            f"Service '{descriptor.service_name}' was published from a non-importable "
            f"function ({descriptor.entry_point})"
        )

    function = import_entry_point(descriptor.entry_point)
    schema = published.manifest.parameter_schema
    result = adapter.register(
        function,
        schema.inputs,
        schema.outputs,
        schema.parameters,
        dependencies=descriptor.dependencies,
        service_name=descriptor.service_name,
    )
    logger.info(
        "Loaded published service",
        service_name=descriptor.service_name,
        published_driver_id=descriptor.driver_id,
        driver_id=result.driver.driver_id,
    )
    return result


def build_argument_parser(published: RegistrationResult) -> argparse.ArgumentParser:
    """Command-line options mirroring the manifest's declared names."""
    schema = published.manifest.parameter_schema
    parser = argparse.ArgumentParser(
        description=f"Run a batch scoring job for service '{published.service_name}'"
    )
    for entry in schema.inputs:
        parser.add_argument(f"--{entry.name}", required=True, help=f"Input ({entry.kind.value})")
    for entry in schema.parameters:
        parser.add_argument(f"--{entry.name}", required=True, help="Parameter")
    for entry in schema.outputs:
        parser.add_argument(f"--{entry.name}", default=None, help=f"Output destination ({entry.kind.value})")
    return parser


def run_driver(driver_file: str, argv: Optional[List[str]] = None) -> int:
    """Entry point of generated driver scripts. Returns a process exit code."""
    config = BatchScoringConfig()
    configure_logging("batch-scoring-driver", config.ml_log_level, config.ml_log_format)

    service_dir = Path(driver_file).resolve().parent
    published = load_artifacts(service_dir)
    args = build_argument_parser(published).parse_args(argv)

    values = {name: value for name, value in vars(args).items() if value is not None}
    adapter = ScoringAdapter.from_config(config)
    try:
        registration = load_registration(service_dir, adapter)
        result = adapter.invoke(registration, ScoringRequest(values))
    except ScoringError as e:
        payload = e.result.to_dict() if e.result is not None else {"error_message": e.message}
        print(json.dumps(payload, indent=2), file=sys.stderr)
        return 1

    print(json.dumps(result.to_dict(), indent=2))
    return 0
