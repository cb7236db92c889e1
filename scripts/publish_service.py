#!/usr/bin/env python3
"""Script to publish a scoring function as a batch scoring service.

Imports the function named by ``--entry-point``, registers it against the
schema file, and writes the driver descriptor and schema manifest to the
artifact directory where the batch scoring service picks them up.

Schema file format (JSON)::

    {
      "inputs": [{"name": "data", "kind": "tabular_dataset", "has_header": true},
                 {"name": "model", "kind": "model_artifact"}],
      "outputs": [{"name": "result", "kind": "file_path"}],
      "parameters": [{"name": "threshold", "kind": "primitive", "sample": 0.5}]
    }
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError
import structlog

from libs.common.config import BatchScoringConfig
from libs.common.logging import configure_logging
from libs.scoring.adapter import ScoringAdapter
from libs.scoring.descriptors import write_artifacts
from libs.scoring.driver import import_entry_point
from libs.scoring.errors import RegistrationStateError, SchemaMismatchError
from libs.scoring.schema import SchemaEntry

logger = structlog.get_logger("publish_service")


def load_schema_file(schema_path: str) -> Dict[str, List[SchemaEntry]]:
    """Parse a schema file into entries per namespace."""
    with open(schema_path, "r") as f:
        data: Dict[str, Any] = json.load(f)

    unknown = set(data) - {"inputs", "outputs", "parameters"}
    if unknown:
        raise ValueError(f"Unknown schema sections: {', '.join(sorted(unknown))}")

    return {
        namespace: [SchemaEntry.model_validate(entry) for entry in data.get(namespace, [])]
        for namespace in ("inputs", "outputs", "parameters")
    }


def publish_service(
    entry_point: str,
    schema_path: str,
    service_name: str,
    dependencies: Sequence[str] = (),
    output_dir: Optional[str] = None,
    config: Optional[BatchScoringConfig] = None,
) -> Path:
    """Register the function and write its artifacts. Returns the service dir."""
    if not config:
        config = BatchScoringConfig()

    function = import_entry_point(entry_point)
    schema = load_schema_file(schema_path)

    adapter = ScoringAdapter(output_root=config.ml_batch_output_root)
    result = adapter.register(
        function,
        schema["inputs"],
        schema["outputs"],
        schema["parameters"],
        dependencies=list(dependencies),
        service_name=service_name,
    )

    service_dir = write_artifacts(result, output_dir or config.ml_batch_artifact_dir)
    logger.info(
        "Service published",
        service_name=service_name,
        driver_id=result.driver.driver_id,
        path=str(service_dir),
    )
    return service_dir


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Publish a batch scoring service")
    parser.add_argument("--entry-point", required=True, help="Scoring function as module:function")
    parser.add_argument("--schema", required=True, help="Path to the schema JSON file")
    parser.add_argument("--service-name", required=True, help="Name of the published service")
    parser.add_argument(
        "--dependency",
        action="append",
        default=[],
        help="File or package the driver depends on (repeatable)",
    )
    parser.add_argument("--output-dir", help="Artifact directory (default: ML_BATCH_ARTIFACT_DIR)")

    args = parser.parse_args()

    config = BatchScoringConfig()
    configure_logging("publish_service", config.ml_log_level, config.ml_log_format)

    try:
        service_dir = publish_service(
            entry_point=args.entry_point,
            schema_path=args.schema,
            service_name=args.service_name,
            dependencies=args.dependency,
            output_dir=args.output_dir,
            config=config,
        )
    except SchemaMismatchError as e:
        print(f"Schema mismatch: {', '.join(e.names)}", file=sys.stderr)
        for detail in e.details:
            print(f"  - {detail}", file=sys.stderr)
        sys.exit(2)
    except (RegistrationStateError, ValidationError, ValueError, OSError) as e:
        print(f"Failed to publish {args.service_name}: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Published {args.service_name} to {service_dir}")
    sys.exit(0)


if __name__ == "__main__":
    main()
