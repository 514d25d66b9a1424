# runner.py
from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .binder import bind
from .config import default_workers
from .dag import JobGraph, build
from .errors import JobTimeoutError, PipelineError, RunCancelledError, StepExecutionError
from .executor import StepExecutor, StepInvocation
from .expressions import mask
from .model import Reference, ResolvedDefinition
from .plan import PlannedJob, compile_plan
from .resolver import Resolver
from .store import DefinitionStore
from .ui.console import get_console

POLL_INTERVAL = 0.05


# ----------------------------------------------------------------------
# States
# ----------------------------------------------------------------------

class JobState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.SKIPPED})

TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.PENDING: frozenset({JobState.READY, JobState.SKIPPED}),
    JobState.READY: frozenset({JobState.RUNNING, JobState.SKIPPED}),
    JobState.RUNNING: frozenset({JobState.SUCCEEDED, JobState.FAILED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.SKIPPED: frozenset(),
}


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    status: StepStatus
    output: Optional[str] = None
    exit_code: Optional[int] = None

    def to_dict(self) -> dict:
        d: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.output:
            d["output"] = self.output
        if self.exit_code is not None:
            d["exit_code"] = self.exit_code
        return d


@dataclass
class JobResult:
    name: str
    status: JobState
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[PipelineError] = None
    reason: Optional[str] = None  # why a job was skipped
    duration: Optional[float] = None

    def to_dict(self) -> dict:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.error is not None:
            d["error"] = self.error.to_dict()
        if self.reason:
            d["reason"] = self.reason
        if self.duration is not None:
            d["duration"] = round(self.duration, 3)
        return d


@dataclass
class PipelineResult:
    reference: str
    digest: str
    status: RunStatus
    jobs: List[JobResult]
    cancelled: bool = False

    def job(self, name: str) -> JobResult:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "digest": self.digest,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "jobs": [j.to_dict() for j in self.jobs],
        }


@dataclass
class PipelineRequest:
    """Invocation request: which pipeline, with which inputs and secrets."""
    reference: Union[str, Reference]
    inputs: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, Any] = field(default_factory=dict)


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class _JobRun:
    """Scheduler-side record of one job. Only the scheduler thread transitions it."""

    def __init__(self, job: PlannedJob):
        self.job = job
        self.state = JobState.PENDING
        self.history: List[JobState] = [JobState.PENDING]
        self.steps: List[StepResult] = []  # appended by the worker thread
        self.cancel = threading.Event()
        self.started: Optional[float] = None
        self.deadline: Optional[float] = None
        self.result: Optional[JobResult] = None

    def transition(self, new: JobState) -> JobState:
        old = self.state
        if new not in TRANSITIONS[old]:
            raise RuntimeError(f"illegal transition for job {self.job.name!r}: {old.value} -> {new.value}")
        self.state = new
        self.history.append(new)
        return old


TransitionHook = Callable[[str, JobState, JobState], None]


class Scheduler:
    """
    Runs a JobGraph:

    - a job becomes READY once its needs are terminal and its condition holds
      (default: every need SUCCEEDED); otherwise it is SKIPPED
    - at most max_workers jobs are RUNNING at once
    - a job past its timeout is FAILED with JobTimeoutError and asked to stop
    - halt_on_failure skips everything not yet started after the first failure
    - cancel() skips PENDING/READY jobs and asks RUNNING ones to stop
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        max_workers: Optional[int] = None,
        halt_on_failure: bool = False,
        on_transition: Optional[TransitionHook] = None,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.executor = executor
        self.max_workers = max(1, max_workers or default_workers())
        self.halt_on_failure = halt_on_failure
        self.on_transition = on_transition
        self.poll_interval = poll_interval
        self._cancel = threading.Event()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ---- transitions ----

    def _move(self, run: _JobRun, new: JobState) -> None:
        old = run.transition(new)
        if self.on_transition is not None:
            self.on_transition(run.job.name, old, new)

    def _duration(self, run: _JobRun) -> Optional[float]:
        return None if run.started is None else time.monotonic() - run.started

    def _skip(self, run: _JobRun, reason: str) -> None:
        self._move(run, JobState.SKIPPED)
        run.result = JobResult(
            name=run.job.name,
            status=JobState.SKIPPED,
            steps=[StepResult(s.name, StepStatus.SKIPPED) for s in run.job.steps],
            reason=reason,
        )
        get_console().print_job_skipped(run.job.name, reason)

    def _fail(self, run: _JobRun, error: PipelineError) -> None:
        self._move(run, JobState.FAILED)
        steps = list(run.steps)
        if len(steps) < len(run.job.steps):
            # stopped mid-step (timeout): the running step failed, the rest never ran
            steps.append(StepResult(run.job.steps[len(steps)].name, StepStatus.FAILED))
            steps.extend(StepResult(s.name, StepStatus.SKIPPED) for s in run.job.steps[len(steps):])
        run.result = JobResult(
            name=run.job.name,
            status=JobState.FAILED,
            steps=steps,
            error=error,
            duration=self._duration(run),
        )
        get_console().print_job_finished(run.job.name, "failed", str(error))

    def _succeed(self, run: _JobRun) -> None:
        self._move(run, JobState.SUCCEEDED)
        run.result = JobResult(
            name=run.job.name,
            status=JobState.SUCCEEDED,
            steps=list(run.steps),
            duration=self._duration(run),
        )
        get_console().print_job_finished(run.job.name, "success")

    def _promote(self, graph: JobGraph, runs: Dict[str, _JobRun]) -> None:
        # graph order is level-major, so a skip reaches its dependents in the same pass
        for name in graph.order:
            run = runs[name]
            if run.state is not JobState.PENDING:
                continue
            states = {n: runs[n].state for n in graph.needs(name)}
            if any(s not in TERMINAL for s in states.values()):
                continue

            condition = run.job.condition
            if condition == "always":
                ok = True
            elif condition == "failure":
                ok = any(s is JobState.FAILED for s in states.values())
            else:
                ok = all(s is JobState.SUCCEEDED for s in states.values())

            if ok:
                self._move(run, JobState.READY)
            else:
                blocked = ", ".join(f"{n} {s.value}" for n, s in states.items() if s is not JobState.SUCCEEDED)
                self._skip(run, f"needs not satisfied: {blocked or 'no failed needs'}")

    # ---- worker side ----

    def _run_job(self, run: _JobRun) -> None:
        job = run.job
        console = get_console()

        for i, planned in enumerate(job.steps):
            if run.cancel.is_set():
                # stopped between steps: nothing from here on ran
                run.steps.extend(StepResult(s.name, StepStatus.SKIPPED) for s in job.steps[i:])
                raise RunCancelledError("run cancelled", job=job.name, step=planned.name)

            console.print_step(job.name, planned.name)
            run_cmd, cwd, step_env = planned.render()
            inv = StepInvocation(
                job=job.name,
                step=planned.name,
                run=run_cmd,
                cwd=cwd,
                env={**job.env, **step_env},
                secrets=job.secrets,
                deadline=run.deadline,
                job_timeout=job.timeout,
                cancel=run.cancel,
            )

            try:
                outcome = self.executor.run(inv)
            except PipelineError:
                self._record_failure(run, i)
                raise
            except Exception as e:
                self._record_failure(run, i)
                raise StepExecutionError(
                    job.name, planned.name, -1, error=mask(f"{type(e).__name__}: {e}", job.secrets)
                ) from e

            output = mask(outcome.output, job.secrets)
            if outcome.exit_code != 0:
                self._record_failure(run, i, output=output, exit_code=outcome.exit_code)
                raise StepExecutionError(job.name, planned.name, outcome.exit_code, output)

            run.steps.append(StepResult(planned.name, StepStatus.SUCCEEDED, output or None, outcome.exit_code))

    def _record_failure(self, run: _JobRun, index: int, output: Optional[str] = None, exit_code: Optional[int] = None) -> None:
        steps = run.job.steps
        run.steps.append(StepResult(steps[index].name, StepStatus.FAILED, output or None, exit_code))
        # fail-fast inside a job: the remaining steps never run
        run.steps.extend(StepResult(s.name, StepStatus.SKIPPED) for s in steps[index + 1:])

    # ---- scheduler loop ----

    def _start(self, pool: ThreadPoolExecutor, run: _JobRun) -> Future:
        self._move(run, JobState.RUNNING)
        run.started = time.monotonic()
        if run.job.timeout is not None:
            run.deadline = run.started + run.job.timeout
        get_console().print_job_start(run.job.name)
        return pool.submit(self._run_job, run)

    def _finish(self, run: _JobRun, fut: Future) -> None:
        if run.state is not JobState.RUNNING:
            return  # already failed by timeout; late result is discarded
        exc = fut.exception()
        if exc is None:
            self._succeed(run)
        elif isinstance(exc, PipelineError):
            self._fail(run, exc)
        else:
            self._fail(run, StepExecutionError(run.job.name, "", -1, error=f"{type(exc).__name__}: {exc}"))

    def _wakeup(self, in_flight: Mapping[Future, _JobRun]) -> float:
        timeout = self.poll_interval
        now = time.monotonic()
        for run in in_flight.values():
            if run.deadline is not None:
                timeout = min(timeout, max(0.0, run.deadline - now))
        return timeout

    def run(self, graph: JobGraph, jobs: Mapping[str, PlannedJob]) -> List[JobResult]:
        runs: Dict[str, _JobRun] = {name: _JobRun(jobs[name]) for name in graph}
        in_flight: Dict[Future, _JobRun] = {}
        halted = False

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reuseci-job")
        try:
            while True:
                if self._cancel.is_set() or halted:
                    reason = "run cancelled" if self._cancel.is_set() else "halted after failure"
                    for run in runs.values():
                        if run.state in (JobState.PENDING, JobState.READY):
                            self._skip(run, reason)
                        elif run.state is JobState.RUNNING and self._cancel.is_set():
                            run.cancel.set()

                self._promote(graph, runs)

                for name in graph.order:
                    if len(in_flight) >= self.max_workers:
                        break
                    run = runs[name]
                    if run.state is JobState.READY:
                        in_flight[self._start(pool, run)] = run

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), timeout=self._wakeup(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    self._finish(in_flight.pop(fut), fut)

                now = time.monotonic()
                for fut, run in list(in_flight.items()):
                    if run.deadline is not None and now >= run.deadline:
                        del in_flight[fut]
                        run.cancel.set()
                        self._fail(run, JobTimeoutError(run.job.name, run.job.timeout))

                if self.halt_on_failure and any(r.state is JobState.FAILED for r in runs.values()):
                    halted = True
        finally:
            # timed-out workers are abandoned, not joined
            pool.shutdown(wait=False, cancel_futures=True)

        return [runs[name].result for name in graph]


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

class PipelineRun:
    """
    A prepared pipeline invocation.

    prepare() does everything that can fail before a job starts:
    resolve -> bind inputs/secrets -> build graph -> bind every bundle call.
    """

    def __init__(
        self,
        resolved: ResolvedDefinition,
        graph: JobGraph,
        jobs: Dict[str, PlannedJob],
        scheduler: Scheduler,
    ):
        self.resolved = resolved
        self.graph = graph
        self.jobs = jobs
        self.scheduler = scheduler

    @classmethod
    def prepare(
        cls,
        source: Union[DefinitionStore, Resolver],
        request: PipelineRequest,
        executor: StepExecutor,
        *,
        coerce_inputs: bool = False,
        **scheduler_options: Any,
    ) -> "PipelineRun":
        resolver = source if isinstance(source, Resolver) else Resolver(source)
        resolved = resolver.resolve_definition(request.reference)
        definition = resolved.definition
        owner = str(resolved.reference)

        inputs = bind(definition.inputs, request.inputs, coerce=coerce_inputs, owner=owner)
        secrets = bind(definition.secrets, request.secrets, secret=True, owner=owner)
        graph = build(resolved)
        jobs = compile_plan(resolved, inputs, secrets)

        return cls(resolved, graph, jobs, Scheduler(executor, **scheduler_options))

    def cancel(self) -> None:
        self.scheduler.cancel()

    def execute(self) -> PipelineResult:
        console = get_console()
        console.print_run_started(str(self.resolved.reference), self.resolved.digest, len(self.graph))
        console.print_plan(self.graph.levels)

        results = self.scheduler.run(self.graph, self.jobs)
        failed = any(r.status is JobState.FAILED for r in results)
        return PipelineResult(
            reference=str(self.resolved.reference),
            digest=self.resolved.digest,
            status=RunStatus.FAILED if failed else RunStatus.SUCCEEDED,
            jobs=results,
            cancelled=self.scheduler.cancelled,
        )


def run_pipeline(
    source: Union[DefinitionStore, Resolver],
    request: PipelineRequest,
    executor: StepExecutor,
    **options: Any,
) -> PipelineResult:
    """Resolve, bind, build and run. Resolution/binding errors raise before any job starts."""
    return PipelineRun.prepare(source, request, executor, **options).execute()
