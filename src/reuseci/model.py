# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from .errors import InvalidDefinitionError, InvalidReferenceError

PARAM_TYPES = ("string", "number", "boolean")
CONDITIONS = ("success", "always", "failure")


class Secret:
    """Opaque secret value. Masked in repr/str; only reveal() returns the text."""

    MASK = "***"
    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = str(value)

    def reveal(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Secret('{self.MASK}')"

    def __str__(self) -> str:
        return self.MASK

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Secret) and other._value == self._value

    def __hash__(self) -> int:
        return hash(("secret", self._value))


def type_name(value: Any) -> str:
    """Contract type name for a python value (used in error messages)."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Secret):
        return "secret"
    return type(value).__name__


def matches_type(value: Any, expected: str) -> bool:
    # bool is an int subclass; keep number and boolean disjoint
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "string":
        return isinstance(value, (str, Secret))
    return False


# ----------------------------------------------------------------------
# References
# ----------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Reference:
    """A `location@version` pointer to a published Definition or Bundle."""
    location: str
    version: str

    def __post_init__(self) -> None:
        parts = self.location.split("/")
        if len(parts) < 2 or any(not p.strip() or p in (".", "..") for p in parts):
            raise InvalidReferenceError(
                f"location must look like 'owner/name[/path]', got {self.location!r}"
            )
        if (
            not self.version
            or any(c in self.version for c in "@/\\")
            or self.version != self.version.strip()
        ):
            raise InvalidReferenceError(f"invalid version tag {self.version!r}", reference=self.location)

    @classmethod
    def parse(cls, text: Union[str, "Reference"]) -> "Reference":
        if isinstance(text, Reference):
            return text
        text = str(text).strip()
        location, sep, version = text.rpartition("@")
        if not sep or not location or not version:
            raise InvalidReferenceError(f"reference must look like 'owner/name@version', got {text!r}")
        return cls(location=location, version=version)

    @property
    def owner(self) -> str:
        return self.location.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.location.split("/", 1)[1]

    def __str__(self) -> str:
        return f"{self.location}@{self.version}"


# ----------------------------------------------------------------------
# Contracts
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Param:
    """One typed entry of an input or secret contract."""
    type: str = "string"
    required: bool = False
    default: Any = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.type not in PARAM_TYPES:
            raise InvalidDefinitionError(f"unknown param type {self.type!r} (expected one of {PARAM_TYPES})")
        if self.required and self.default is not None:
            raise InvalidDefinitionError("a required param cannot declare a default")
        if self.default is not None and not matches_type(self.default, self.type):
            raise InvalidDefinitionError(
                f"default {self.default!r} does not match type {self.type}"
            )


Contract = Dict[str, Param]


# ----------------------------------------------------------------------
# Steps and jobs
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """A primitive shell step."""
    name: str
    run: str
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BundleCall:
    """A step that inlines a published Bundle."""
    name: str
    uses: Reference
    with_: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for k, v in self.with_.items():
            if not isinstance(v, (str, int, float, bool)):
                raise InvalidDefinitionError(
                    f"'with' value for {k!r} must be a string, number or boolean",
                    step=self.name,
                )


StepLike = Union[Step, BundleCall]


@dataclass(frozen=True)
class Job:
    """
    A unit of work inside a Definition: ordered steps + `needs` edges.

    condition:
      - "success": run only when every needed job succeeded (default)
      - "always":  run once every needed job is terminal
      - "failure": run only when a needed job failed
    """
    name: str
    steps: List[StepLike]
    needs: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    condition: str = "success"

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidDefinitionError("job name must not be empty")
        if not self.steps:
            raise InvalidDefinitionError(f"job {self.name!r} must have at least one step", job=self.name)
        if self.condition not in CONDITIONS:
            raise InvalidDefinitionError(
                f"unknown condition {self.condition!r} (expected one of {CONDITIONS})", job=self.name
            )
        if self.timeout is not None and (
            isinstance(self.timeout, bool)
            or not isinstance(self.timeout, (int, float))
            or self.timeout <= 0
        ):
            raise InvalidDefinitionError("timeout must be positive", job=self.name)


@dataclass(frozen=True)
class Definition:
    """A named, versioned, top-level pipeline: ordered jobs + input/secret contracts."""
    kind: ClassVar[str] = "definition"

    location: str
    version: str
    jobs: List[Job]
    inputs: Contract = field(default_factory=dict)
    secrets: Contract = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        ref = self.reference  # validates location/version
        if not self.jobs:
            raise InvalidDefinitionError("definition must declare at least one job", reference=str(ref))
        for name, p in self.secrets.items():
            if p.type != "string":
                raise InvalidDefinitionError(f"secret {name!r} must be of type string", reference=str(ref))

    @property
    def reference(self) -> Reference:
        return Reference(self.location, self.version)

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


@dataclass(frozen=True)
class Bundle:
    """A named, versioned, reusable sequence of steps with its own input contract."""
    kind: ClassVar[str] = "bundle"

    location: str
    version: str
    steps: List[StepLike]
    inputs: Contract = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        ref = self.reference
        if not self.steps:
            raise InvalidDefinitionError("bundle must declare at least one step", reference=str(ref))

    @property
    def reference(self) -> Reference:
        return Reference(self.location, self.version)


Item = Union[Definition, Bundle]


# ----------------------------------------------------------------------
# Resolved (fully materialized) forms
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class InlinedBundle:
    """A BundleCall with its Bundle's steps expanded in place; the contract is kept for binding."""
    call: BundleCall
    reference: Reference
    digest: str
    inputs: Contract
    steps: Tuple["ResolvedStep", ...]

    @property
    def name(self) -> str:
        return self.call.name


ResolvedStep = Union[Step, InlinedBundle]


@dataclass(frozen=True)
class ResolvedJob:
    job: Job
    steps: Tuple[ResolvedStep, ...]

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def needs(self) -> List[str]:
        return self.job.needs


@dataclass(frozen=True)
class ResolvedBundle:
    reference: Reference
    digest: str
    bundle: Bundle
    steps: Tuple[ResolvedStep, ...]

    def to_dict(self) -> dict:
        from .serialize import resolved_to_dict
        return resolved_to_dict(self)


@dataclass(frozen=True)
class ResolvedDefinition:
    reference: Reference
    digest: str
    definition: Definition
    jobs: Tuple[ResolvedJob, ...]

    def job(self, name: str) -> ResolvedJob:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def to_dict(self) -> dict:
        from .serialize import resolved_to_dict
        return resolved_to_dict(self)
