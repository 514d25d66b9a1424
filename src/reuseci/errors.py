# errors.py
from __future__ import annotations

from typing import Any, Iterable, Optional


class PipelineError(Exception):
    """
    Structured pipeline error with enough context for:
      - clean CLI output
      - HTTP error bodies
      - debugging without full tracebacks
    """

    def __init__(
        self,
        message: str,
        *,
        reference: Optional[str] = None,
        job: Optional[str] = None,
        step: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.reference = reference
        self.job = job
        self.step = step
        self.details = details

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.reference:
            lines.append(f"reference={self.reference}")
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"kind": self.kind, "message": self.message}
        for k in ("reference", "job", "step"):
            v = getattr(self, k)
            if v:
                out[k] = v
        if self.details:
            out["details"] = {k: str(v) for k, v in self.details.items()}
        return out


# ----------------------------------------------------------------------
# Resolution stage
# ----------------------------------------------------------------------

class NotFoundError(PipelineError):
    def __init__(self, reference: str, **kw: Any):
        super().__init__(f"no published definition or bundle at {reference}", reference=reference, **kw)


class InvalidReferenceError(PipelineError):
    pass


class InvalidDefinitionError(PipelineError):
    pass


class CycleError(PipelineError):
    def __init__(self, cycle: Iterable[str], *, what: str = "references", **kw: Any):
        self.cycle = list(cycle)
        super().__init__(f"cycle detected in {what}: {' -> '.join(self.cycle)}", **kw)


class UnknownDependencyError(PipelineError):
    def __init__(self, job: str, dependency: str, known: Iterable[str], **kw: Any):
        self.dependency = dependency
        super().__init__(
            f"job '{job}' needs missing job '{dependency}'",
            job=job,
            known=sorted(known),
            **kw,
        )


class VersionImmutabilityError(PipelineError):
    def __init__(self, reference: str, expected: str, actual: str, **kw: Any):
        super().__init__(
            f"tag {reference} is immutable but its content changed",
            reference=reference,
            expected_digest=expected,
            actual_digest=actual,
            **kw,
        )


# ----------------------------------------------------------------------
# Binding stage
# ----------------------------------------------------------------------

class MissingRequiredInputError(PipelineError):
    def __init__(self, key: str, **kw: Any):
        self.key = key
        super().__init__(f"missing required input '{key}'", **kw)


class UnknownInputError(PipelineError):
    def __init__(self, key: str, **kw: Any):
        self.key = key
        super().__init__(f"unknown input '{key}'", **kw)


class TypeMismatchError(PipelineError):
    def __init__(self, key: str, expected: str, actual: str, **kw: Any):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"input '{key}' expects {expected}, got {actual}", **kw)


# ----------------------------------------------------------------------
# Execution stage
# ----------------------------------------------------------------------

class JobTimeoutError(PipelineError, TimeoutError):
    def __init__(self, job: str, timeout: float, **kw: Any):
        self.timeout = timeout
        super().__init__(f"job exceeded its {timeout:g}s timeout", job=job, **kw)


class StepExecutionError(PipelineError):
    def __init__(self, job: str, step: str, exit_code: int, output: str = "", **kw: Any):
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"step failed (exit={exit_code})", job=job, step=step, **kw)


class RunCancelledError(PipelineError):
    pass
