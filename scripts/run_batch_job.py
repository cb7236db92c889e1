#!/usr/bin/env python3
"""Script to run one batch scoring job against a published service.

Values are passed as repeated ``--set name=value`` options; output names may
be set to choose a destination, otherwise outputs land under
``ML_BATCH_OUTPUT_ROOT``. Prints the job result as JSON.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from libs.common.config import BatchScoringConfig
from libs.common.logging import configure_logging
from libs.scoring.adapter import InvocationResult, ScoringAdapter, ScoringRequest
from libs.scoring.driver import load_registration
from libs.scoring.errors import ScoringError

logger = structlog.get_logger("run_batch_job")


def parse_assignments(assignments: List[str]) -> Dict[str, str]:
    """Turn ``name=value`` strings into a mapping."""
    values: Dict[str, str] = {}
    for assignment in assignments:
        name, separator, value = assignment.partition("=")
        if not separator or not name:
            raise ValueError(f"Expected name=value, got '{assignment}'")
        values[name.strip()] = value
    return values


def run_batch_job(
    service: str,
    values: Dict[str, str],
    config: Optional[BatchScoringConfig] = None,
) -> InvocationResult:
    """Load a published service and run one job.

    ``service`` is either a service directory or a service name under the
    configured artifact directory.
    """
    if not config:
        config = BatchScoringConfig()

    service_dir = Path(service)
    if not service_dir.is_dir():
        service_dir = Path(config.ml_batch_artifact_dir) / service

    logger.info("Running batch job", service_dir=str(service_dir), names=sorted(values))
    adapter = ScoringAdapter.from_config(config)
    registration = load_registration(service_dir, adapter)
    return adapter.invoke(registration, ScoringRequest(values))


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Run a batch scoring job")
    parser.add_argument("service", help="Service name or published service directory")
    parser.add_argument("--set", dest="assignments", action="append", default=[], help="name=value")

    args = parser.parse_args()

    config = BatchScoringConfig()
    configure_logging("run_batch_job", config.ml_log_level, config.ml_log_format)

    try:
        values = parse_assignments(args.assignments)
        result = run_batch_job(args.service, values, config=config)
    except ScoringError as e:
        payload = e.result.to_dict() if e.result is not None else {
            "error_category": e.category,
            "error_message": e.message,
        }
        print(json.dumps(payload, indent=2), file=sys.stderr)
        sys.exit(1)
    except (ValueError, OSError) as e:
        print(f"Failed to run job for {args.service}: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2))
    sys.exit(0)


if __name__ == "__main__":
    main()
