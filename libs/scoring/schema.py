"""Parameter schema for scoring functions.

A scoring function declares three namespaces of named arguments:

- ``inputs``: data the function reads (datasets, files, the model artifact)
- ``outputs``: locations the function writes to
- ``parameters``: primitive settings (thresholds, flags, column names)

Each name maps to a ``SchemaEntry``. Entries are frozen pydantic models so a
schema cannot change after registration, and the schema serializes directly
into the manifest handed to deployment tooling.
"""

from collections import Counter
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PRIMITIVE_TYPES = (bool, int, float, str)

_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off"}


class DataKind(str, Enum):
    """What a schema entry refers to."""
    TABULAR_DATASET = "tabular_dataset"
    FILE_PATH = "file_path"
    MODEL_ARTIFACT = "model_artifact"
    PRIMITIVE = "primitive"


class SchemaEntry(BaseModel):
    """One named argument of a scoring function."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Argument name, must be a Python identifier")
    kind: DataKind = Field(..., description="Kind of data bound to the argument")
    has_header: bool = Field(False, description="Whether a tabular source has a header row")
    sample: Optional[Any] = Field(None, description="Example value; fixes the type of primitives")
    description: Optional[str] = Field(None, description="Free-form documentation")

    @field_validator("name")
    @classmethod
    def _name_is_identifier(cls, value: str) -> str:
        if not value.isidentifier():
            raise ValueError(f"'{value}' is not a valid argument name")
        return value

    @model_validator(mode="after")
    def _sample_matches_kind(self) -> "SchemaEntry":
        if self.sample is None:
            return self
        if self.kind == DataKind.PRIMITIVE:
            if not isinstance(self.sample, PRIMITIVE_TYPES):
                raise ValueError(
                    f"Sample for primitive '{self.name}' must be bool, int, float or str"
                )
        elif not isinstance(self.sample, str):
            raise ValueError(f"Sample for reference '{self.name}' must be a path or URI")
        return self

    @classmethod
    def dataset(cls, name: str, has_header: bool = True, **kwargs: Any) -> "SchemaEntry":
        return cls(name=name, kind=DataKind.TABULAR_DATASET, has_header=has_header, **kwargs)

    @classmethod
    def file(cls, name: str, **kwargs: Any) -> "SchemaEntry":
        return cls(name=name, kind=DataKind.FILE_PATH, **kwargs)

    @classmethod
    def model(cls, name: str, **kwargs: Any) -> "SchemaEntry":
        return cls(name=name, kind=DataKind.MODEL_ARTIFACT, **kwargs)

    @classmethod
    def primitive(cls, name: str, sample: Any = None, **kwargs: Any) -> "SchemaEntry":
        return cls(name=name, kind=DataKind.PRIMITIVE, sample=sample, **kwargs)

    @property
    def is_reference(self) -> bool:
        """True when the argument is a location rather than an inline value."""
        return self.kind != DataKind.PRIMITIVE

    def coerce(self, value: Any) -> Any:
        """Convert a request value to the type fixed by ``sample``.

        Reference kinds are returned untouched. Raises ``ValueError`` or
        ``TypeError`` when the value cannot represent the sample's type.
        """
        if self.is_reference or self.sample is None or value is None:
            return value

        target = type(self.sample)
        if isinstance(value, target) and not (target is int and isinstance(value, bool)):
            return value

        if target is bool:
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
            if isinstance(value, int) and value in (0, 1):
                return bool(value)
            raise ValueError(f"{value!r} is not a boolean")

        if isinstance(value, bool):
            raise TypeError(f"{value!r} is a boolean, expected {target.__name__}")

        if target is int:
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{value!r} is not an integer")
            return int(value)
        if target is float:
            return float(value)
        return str(value)


class ParameterSchema(BaseModel):
    """The three argument namespaces of a scoring function."""

    model_config = ConfigDict(frozen=True)

    inputs: Tuple[SchemaEntry, ...] = ()
    outputs: Tuple[SchemaEntry, ...] = ()
    parameters: Tuple[SchemaEntry, ...] = ()

    @model_validator(mode="after")
    def _entries_are_consistent(self) -> "ParameterSchema":
        problems = find_schema_problems(self.inputs, self.outputs, self.parameters)
        if problems:
            raise ValueError("; ".join(f"{name}: {reason}" for name, reason in problems))
        return self

    def entries(self) -> Iterator[Tuple[str, SchemaEntry]]:
        """Yield ``(namespace, entry)`` pairs in declaration order."""
        for entry in self.inputs:
            yield "inputs", entry
        for entry in self.outputs:
            yield "outputs", entry
        for entry in self.parameters:
            yield "parameters", entry

    def names(self) -> List[str]:
        return [entry.name for _, entry in self.entries()]

    def get(self, name: str) -> Optional[SchemaEntry]:
        for _, entry in self.entries():
            if entry.name == name:
                return entry
        return None

    @property
    def input_names(self) -> List[str]:
        return [entry.name for entry in self.inputs]

    @property
    def output_names(self) -> List[str]:
        return [entry.name for entry in self.outputs]

    @property
    def parameter_names(self) -> List[str]:
        return [entry.name for entry in self.parameters]

    def to_manifest(self) -> Dict[str, Any]:
        """JSON-ready view used inside the schema manifest."""
        return self.model_dump(mode="json")


def find_schema_problems(
    inputs: Sequence[SchemaEntry],
    outputs: Sequence[SchemaEntry],
    parameters: Sequence[SchemaEntry],
) -> List[Tuple[str, str]]:
    """Collect every ``(name, reason)`` that makes a schema unusable.

    Names must be unique within and across namespaces because each one binds
    exactly one function argument. Outputs must be locations and parameters
    must be primitive values.
    """
    problems: List[Tuple[str, str]] = []

    counts = Counter(entry.name for entry in (*inputs, *outputs, *parameters))
    for name in sorted(name for name, count in counts.items() if count > 1):
        problems.append((name, "declared more than once"))

    for entry in outputs:
        if entry.kind not in (DataKind.FILE_PATH, DataKind.TABULAR_DATASET):
            problems.append((entry.name, "outputs must be file or dataset locations"))
    for entry in parameters:
        if entry.kind != DataKind.PRIMITIVE:
            problems.append((entry.name, "parameters must be primitive values"))

    return problems
