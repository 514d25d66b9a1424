# plan.py
"""
Compile resolved jobs into flat, bound step lists.

Every inlined bundle has its `with` block rendered against the caller's
scope and bound against the bundle's own contract here, before any job
runs. The scheduler only ever sees primitive steps.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from . import expressions
from .binder import ResolvedBindings, bind
from .errors import PipelineError
from .model import ResolvedDefinition, ResolvedJob, Secret, Step

Scopes = Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True)
class PlannedStep:
    name: str
    step: Step
    scopes: Scopes
    reference: Optional[str] = None  # bundle that contributed the step

    def render(self) -> Tuple[str, Optional[str], Dict[str, Union[str, Secret]]]:
        run = expressions.render(self.step.run, self.scopes, reveal=True)
        cwd = expressions.render(self.step.cwd, self.scopes, reveal=True) if self.step.cwd else None
        env = {k: _env_value(expressions.render(v, self.scopes)) for k, v in self.step.env.items()}
        return run, cwd, env


@dataclass(frozen=True)
class PlannedJob:
    name: str
    needs: Tuple[str, ...]
    condition: str
    timeout: Optional[float]
    env: Dict[str, Union[str, Secret]]
    steps: Tuple[PlannedStep, ...]
    secrets: Tuple[Secret, ...] = field(default=())  # only the secrets this job references


def _env_value(value: Any) -> Union[str, Secret]:
    return value if isinstance(value, Secret) else expressions.to_text(value)


def _check_step(step: Step, scopes: Scopes, ctx: dict) -> None:
    for template in (step.run, step.cwd, *step.env.values()):
        expressions.check(template, scopes, **ctx)


def _used_secrets(templates, scopes: Scopes) -> List[Secret]:
    found = []
    secrets = scopes.get("secrets", {})
    for name in expressions.secret_names(templates):
        value = secrets.get(name)
        if isinstance(value, Secret):
            found.append(value)
    return found


def compile_job(
    rjob: ResolvedJob,
    inputs: ResolvedBindings,
    secrets: ResolvedBindings,
    *,
    owner: str,
) -> PlannedJob:
    top_scopes: Scopes = {"inputs": inputs, "secrets": secrets}
    job_secrets: List[Secret] = []

    for v in rjob.job.env.values():
        expressions.check(v, top_scopes, reference=owner, job=rjob.name)
    env = {k: _env_value(expressions.render(v, top_scopes)) for k, v in rjob.job.env.items()}
    job_secrets.extend(_used_secrets(rjob.job.env.values(), top_scopes))

    planned: List[PlannedStep] = []
    # (steps, scopes, name prefix, owning reference)
    stack = [(iter(rjob.steps), top_scopes, "", owner)]

    while stack:
        steps_iter, scopes, prefix, ref = stack[-1]
        step = next(steps_iter, None)
        if step is None:
            stack.pop()
            continue

        name = f"{prefix}{step.name}"
        ctx = {"reference": ref, "job": rjob.name, "step": name}

        if isinstance(step, Step):
            _check_step(step, scopes, ctx)
            if scopes is top_scopes:
                job_secrets.extend(_used_secrets((step.run, step.cwd, *step.env.values()), scopes))
            planned.append(
                PlannedStep(name=name, step=step, scopes=scopes, reference=None if ref == owner else ref)
            )
            continue

        # InlinedBundle: render `with` in the caller's scope, bind in the bundle's
        with_ = step.call.with_
        for v in with_.values():
            expressions.check(v, scopes, **ctx)
        if scopes is top_scopes:
            job_secrets.extend(_used_secrets(with_.values(), scopes))
        rendered = {k: expressions.render(v, scopes) for k, v in with_.items()}
        try:
            bound = bind(step.inputs, rendered, owner=str(step.reference))
        except PipelineError as e:
            e.job = e.job or rjob.name
            e.step = e.step or name
            raise
        stack.append((iter(step.steps), {"inputs": bound}, f"{name} / ", str(step.reference)))

    unique: Dict[str, Secret] = {}
    for s in job_secrets:
        unique.setdefault(s.reveal(), s)

    return PlannedJob(
        name=rjob.name,
        needs=tuple(rjob.needs),
        condition=rjob.job.condition,
        timeout=rjob.job.timeout,
        env=env,
        steps=tuple(planned),
        secrets=tuple(unique.values()),
    )


def compile_plan(
    resolved: ResolvedDefinition,
    inputs: ResolvedBindings,
    secrets: ResolvedBindings,
) -> Dict[str, PlannedJob]:
    owner = str(resolved.reference)
    return {rj.name: compile_job(rj, inputs, secrets, owner=owner) for rj in resolved.jobs}
