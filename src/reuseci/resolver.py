# resolver.py
from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import CycleError, InvalidReferenceError, PipelineError, VersionImmutabilityError
from .model import (
    Bundle,
    BundleCall,
    Contract,
    InlinedBundle,
    Reference,
    ResolvedBundle,
    ResolvedDefinition,
    ResolvedJob,
    ResolvedStep,
    Step,
    StepLike,
)
from .serialize import content_digest
from .store import DefinitionStore, Published


@dataclass
class _Frame:
    """One entry of the resolution stack: a step list being expanded."""
    reference: Reference
    steps: Sequence[StepLike]
    out: List[ResolvedStep] = field(default_factory=list)
    index: int = 0
    call: Optional[BundleCall] = None
    digest: str = ""
    contract: Contract = field(default_factory=dict)


class Resolver:
    """
    Resolve references against a DefinitionStore.

    - Every fetched document is re-hashed and checked against the digest the
      store recorded and against any digest this resolver saw (or was pinned
      with) before. A mismatch is a VersionImmutabilityError.
    - Bundle references are expanded depth-first with an explicit stack, so a
      reference that re-enters the stack is reported as a CycleError instead
      of recursing forever.
    - Results are cached for the lifetime of the resolver (one pipeline run).
    """

    def __init__(self, store: DefinitionStore, *, pins: Optional[Mapping[str, str]] = None):
        self.store = store
        self._lock = threading.Lock()
        self._pins: Dict[Reference, str] = {Reference.parse(k): v for k, v in (pins or {}).items()}
        self._fetched: Dict[Reference, Published] = {}
        self._expanded: Dict[Reference, Tuple[ResolvedStep, ...]] = {}

    # ------------------------------------------------------------------
    # pins (lock file support)
    # ------------------------------------------------------------------

    def pins(self) -> Dict[str, str]:
        with self._lock:
            return {str(r): d for r, d in sorted(self._pins.items())}

    def clear_cache(self) -> None:
        """Drop cached content; pins are kept so later fetches are still verified."""
        with self._lock:
            self._fetched.clear()
            self._expanded.clear()

    # ------------------------------------------------------------------
    # fetch + verify
    # ------------------------------------------------------------------

    def fetch(self, reference: Union[str, Reference]) -> Published:
        ref = Reference.parse(reference)
        with self._lock:
            cached = self._fetched.get(ref)
        if cached is not None:
            return cached

        published = self.store.fetch(ref)
        if published.item.reference != ref:
            raise InvalidReferenceError(
                f"store returned {published.item.reference} for {ref}", reference=str(ref)
            )

        actual = content_digest(published.item)
        if published.digest and published.digest != actual:
            raise VersionImmutabilityError(str(ref), published.digest, actual)

        with self._lock:
            pinned = self._pins.get(ref)
            if pinned is not None and pinned != actual:
                raise VersionImmutabilityError(str(ref), pinned, actual)
            self._pins[ref] = actual
            verified = Published(item=published.item, digest=actual)
            self._fetched[ref] = verified
        return verified

    # ------------------------------------------------------------------
    # resolve
    # ------------------------------------------------------------------

    def resolve(self, reference: Union[str, Reference]) -> Union[ResolvedDefinition, ResolvedBundle]:
        ref = Reference.parse(reference)
        published = self.fetch(ref)
        item = published.item

        if isinstance(item, Bundle):
            steps = self._expand(item.steps, ref)
            return ResolvedBundle(reference=ref, digest=published.digest, bundle=item, steps=steps)

        jobs = tuple(
            ResolvedJob(job=job, steps=self._expand(job.steps, ref, job=job.name))
            for job in item.jobs
        )
        return ResolvedDefinition(reference=ref, digest=published.digest, definition=item, jobs=jobs)

    def resolve_definition(self, reference: Union[str, Reference]) -> ResolvedDefinition:
        resolved = self.resolve(reference)
        if not isinstance(resolved, ResolvedDefinition):
            raise InvalidReferenceError(
                f"{reference} is a bundle; a pipeline run needs a definition", reference=str(reference)
            )
        return resolved

    def _fetch_bundle(self, call: BundleCall, job: Optional[str]) -> Published:
        try:
            published = self.fetch(call.uses)
        except PipelineError as e:
            e.job = e.job or job
            e.step = e.step or call.name
            raise
        if not isinstance(published.item, Bundle):
            raise InvalidReferenceError(
                f"{call.uses} is a {published.item.kind}; steps can only use bundles",
                reference=str(call.uses),
                job=job,
                step=call.name,
            )
        return published

    def _expand(
        self,
        steps: Sequence[StepLike],
        root: Reference,
        *,
        job: Optional[str] = None,
    ) -> Tuple[ResolvedStep, ...]:
        frames: List[_Frame] = [_Frame(reference=root, steps=steps)]
        on_stack: Dict[Reference, int] = {root: 0}  # reference -> index into frames

        while True:
            top = frames[-1]

            if top.index == len(top.steps):
                frames.pop()
                if not frames:
                    return tuple(top.out)
                del on_stack[top.reference]
                expanded = tuple(top.out)
                with self._lock:
                    self._expanded[top.reference] = expanded
                frames[-1].out.append(
                    InlinedBundle(
                        call=top.call,
                        reference=top.reference,
                        digest=top.digest,
                        inputs=top.contract,
                        steps=expanded,
                    )
                )
                continue

            step = top.steps[top.index]
            top.index += 1

            if isinstance(step, Step):
                top.out.append(step)
                continue

            ref = step.uses
            if ref in on_stack:
                chain = [str(f.reference) for f in frames[on_stack[ref]:]] + [str(ref)]
                raise CycleError(chain, what="bundle references", reference=str(root), job=job, step=step.name)

            published = self._fetch_bundle(step, job)
            bundle = published.item

            with self._lock:
                done = self._expanded.get(ref)
            if done is not None:
                # fully expanded earlier, so it cannot reach anything on the stack
                top.out.append(
                    InlinedBundle(call=step, reference=ref, digest=published.digest, inputs=bundle.inputs, steps=done)
                )
                continue

            on_stack[ref] = len(frames)
            frames.append(
                _Frame(
                    reference=ref,
                    steps=bundle.steps,
                    call=step,
                    digest=published.digest,
                    contract=bundle.inputs,
                )
            )


# ----------------------------------------------------------------------
# Lock files
# ----------------------------------------------------------------------

def read_lock(path: Union[str, Path]) -> Dict[str, str]:
    p = Path(path)
    if not p.exists():
        return {}
    data = json.loads(p.read_text(encoding="utf-8"))
    return {str(k): str(v) for k, v in (data.get("pins") or {}).items()}


def write_lock(path: Union[str, Path], pins: Mapping[str, str]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps({"pins": dict(sorted(pins.items()))}, indent=2) + "\n", encoding="utf-8")
