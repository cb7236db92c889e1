"""Deployable artifacts produced by a successful registration.

A registration yields two descriptors keyed by service name:

- ``DriverDescriptor``: how the hosted environment calls the function
  (entry point, argument order, dependencies) plus a rendered driver script
- ``SchemaManifest``: the declared inputs, outputs and parameters

``write_artifacts`` lays them out on disk as::

    <directory>/<service_name>/driver.py
    <directory>/<service_name>/driver.json
    <directory>/<service_name>/schema.json

which is the layout the publishing tool and the batch scoring service read.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from string import Template
from typing import Iterator, List, Union
import uuid

from pydantic import BaseModel, ConfigDict, Field
import structlog

from .schema import ParameterSchema

logger = structlog.get_logger("scoring.descriptors")

DRIVER_SCRIPT = "driver.py"
DRIVER_DESCRIPTOR = "driver.json"
SCHEMA_MANIFEST = "schema.json"

MANIFEST_VERSION = 1

_DRIVER_TEMPLATE = Template('''\
"""Batch scoring driver for service '$service_name'.

Generated at $created_at (driver $driver_id). Do not edit; publish again
to regenerate.

Entry point: $entry_point
Arguments: $arguments
"""

import sys

from libs.scoring.driver import run_driver

if __name__ == "__main__":
    sys.exit(run_driver(__file__, sys.argv[1:]))
''')


class DriverDescriptor(BaseModel):
    """Everything deployment tooling needs to call the scoring function."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    driver_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    entry_point: str = Field(..., description="Import path as 'module:qualname'")
    importable: bool = Field(True, description="Whether entry_point can be imported by a driver")
    arguments: List[str] = Field(default_factory=list, description="Function arguments in call order")
    dependencies: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    script: str = Field("", description="Rendered driver script", exclude=True)


class SchemaManifest(BaseModel):
    """Declared calling interface of a published scoring function."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    manifest_version: int = MANIFEST_VERSION
    parameter_schema: ParameterSchema


class RegistrationResult(BaseModel):
    """Driver descriptor and schema manifest for one service."""

    model_config = ConfigDict(frozen=True)

    driver: DriverDescriptor
    manifest: SchemaManifest

    @property
    def service_name(self) -> str:
        return self.manifest.service_name


def render_driver(descriptor: DriverDescriptor) -> str:
    """Render the driver script for a descriptor."""
    return _DRIVER_TEMPLATE.substitute(
        service_name=descriptor.service_name,
        created_at=descriptor.created_at,
        driver_id=descriptor.driver_id,
        entry_point=descriptor.entry_point,
        arguments=", ".join(descriptor.arguments) or "(none)",
    )


def write_artifacts(result: RegistrationResult, directory: Union[str, Path]) -> Path:
    """Write the descriptor pair under ``directory/<service_name>/``.

    Existing files for the same service are overwritten. Returns the service
    directory.
    """
    service_dir = Path(directory) / result.service_name
    service_dir.mkdir(parents=True, exist_ok=True)

    script = result.driver.script or render_driver(result.driver)
    (service_dir / DRIVER_SCRIPT).write_text(script)
    (service_dir / DRIVER_DESCRIPTOR).write_text(result.driver.model_dump_json(indent=2))
    (service_dir / SCHEMA_MANIFEST).write_text(result.manifest.model_dump_json(indent=2))

    logger.info(
        "Wrote service artifacts",
        service_name=result.service_name,
        driver_id=result.driver.driver_id,
        path=str(service_dir),
    )
    return service_dir


def load_artifacts(service_dir: Union[str, Path]) -> RegistrationResult:
    """Read a descriptor pair written by ``write_artifacts``."""
    service_dir = Path(service_dir)
    with open(service_dir / DRIVER_DESCRIPTOR, "r") as f:
        driver_data = json.load(f)
    with open(service_dir / SCHEMA_MANIFEST, "r") as f:
        manifest_data = json.load(f)

    script_path = service_dir / DRIVER_SCRIPT
    if script_path.exists():
        driver_data["script"] = script_path.read_text()

    manifest = SchemaManifest.model_validate(manifest_data)
    if manifest.manifest_version != MANIFEST_VERSION:
        raise ValueError(
            f"Unsupported manifest version {manifest.manifest_version} in {service_dir}"
        )
    return RegistrationResult(
        driver=DriverDescriptor.model_validate(driver_data),
        manifest=manifest,
    )


def iter_service_dirs(directory: Union[str, Path]) -> Iterator[Path]:
    """Yield every service directory under ``directory`` holding a manifest."""
    root = Path(directory)
    if not root.is_dir():
        return
    for child in sorted(root.iterdir()):
        if (child / SCHEMA_MANIFEST).is_file() and (child / DRIVER_DESCRIPTOR).is_file():
            yield child
