# src/reuseci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .model import Bundle, BundleCall, Contract, Definition, Item, Job, Param, Reference, Step, StepLike


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env={k: str(v) for k, v in (env or {}).items()})


def uses(
    reference: Union[str, Reference],
    *,
    name: str | None = None,
    with_: Optional[Dict[str, Any]] = None,
    **inputs: Any,
) -> BundleCall:
    """
    Call a published bundle as a step.

        uses("acme/setup-python@v2", version="3.12")
        uses("acme/deploy@v1", with_={"dry-run": True})   # keys that aren't identifiers
    """
    ref = Reference.parse(reference)
    bindings = dict(with_ or {})
    bindings.update(inputs)
    return BundleCall(name=name or str(ref), uses=ref, with_=bindings)


# ---------------------------------------------------------------------
# Contract helpers
# ---------------------------------------------------------------------

def param(
    type: str = "string",
    *,
    required: bool = False,
    default: Any = None,
    description: str = "",
) -> Param:
    return Param(type=type, required=required, default=default, description=description)


def secret(description: str = "", *, required: bool = True) -> Param:
    return Param(type="string", required=required, description=description)


def _contract(spec: Optional[Dict[str, Union[Param, str]]]) -> Contract:
    # allow the shorthand {"name": "number"}
    return {k: v if isinstance(v, Param) else Param(type=v) for k, v in (spec or {}).items()}


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepLike,  # allow: job("x", sh(...), uses(...))
    steps_list: Optional[List[StepLike]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    condition: str = "success",
    cwd: str | None = None,  # default cwd applied to shell steps missing cwd
) -> Job:
    steps_final: List[StepLike] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if cwd is not None:
        steps_final = [
            replace(s, cwd=cwd) if isinstance(s, Step) and s.cwd is None else s
            for s in steps_final
        ]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
        condition=condition,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[StepLike] = []
        self._env: dict[str, str] = {}
        self._timeout: Optional[float] = None
        self._condition = "success"

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **env: Any):
        self._steps.append(sh(name, run, cwd=cwd, env=env))
        return self

    def use_bundle(self, reference: Union[str, Reference], *, name: str | None = None, **inputs: Any):
        self._steps.append(uses(reference, name=name, **inputs))
        return self

    def with_env(self, **env):
        # values are strings in the canonical form
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def timeout_after(self, seconds: float):
        self._timeout = seconds
        return self

    def run_if(self, condition: str):
        self._condition = condition
        return self

    def always(self):
        return self.run_if("always")

    def on_failure(self):
        return self.run_if("failure")

    def build(self) -> Job:
        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            env=dict(self._env),
            timeout=self._timeout,
            condition=self._condition,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("py", ["3.10","3.11"]).jobs(
            lambda v: job(f"test-py{v}", uses("acme/setup-python@v2", version=v))
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Publishable items
# ---------------------------------------------------------------------

def definition(
    reference: Union[str, Reference],
    *jobs: Union[Job, List[Job]],
    inputs: Optional[Dict[str, Union[Param, str]]] = None,
    secrets: Optional[Dict[str, Union[Param, str]]] = None,
    description: str = "",
) -> Definition:
    """definition("acme/ci@v1", job(...), matrix(...).jobs(...), inputs={...})"""
    ref = Reference.parse(reference)
    flat: List[Job] = []
    for j in jobs:
        flat.extend(j if isinstance(j, list) else [j])
    return Definition(
        location=ref.location,
        version=ref.version,
        jobs=flat,
        inputs=_contract(inputs),
        secrets=_contract(secrets),
        description=description,
    )


def bundle(
    reference: Union[str, Reference],
    *steps: StepLike,
    inputs: Optional[Dict[str, Union[Param, str]]] = None,
    description: str = "",
) -> Bundle:
    ref = Reference.parse(reference)
    return Bundle(
        location=ref.location,
        version=ref.version,
        steps=list(steps),
        inputs=_contract(inputs),
        description=description,
    )


# ---------------------------------------------------------------------
# File helper (single-file story)
# ---------------------------------------------------------------------

def wf(*items: Union[Item, List[Item]]) -> List[Item]:
    """
    Collect definitions and bundles for a definitions file.

    Users can write:
        from reuseci import wf, definition, bundle, job, sh, uses

        def definitions():
            return wf(
                bundle("acme/lint@v1", sh("ruff", "ruff check .")),
                definition("acme/ci@v1", job("lint", uses("acme/lint@v1"))),
            )

    Or use DEFINITIONS directly:
        DEFINITIONS = wf(bundle(...), definition(...))
    """
    out: List[Item] = []
    for item in items:
        out.extend(item if isinstance(item, list) else [item])
    return out
