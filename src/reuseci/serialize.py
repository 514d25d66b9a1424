# serialize.py
"""
Canonical dict / JSON forms and document parsing.

The canonical form is what gets hashed into a content digest, stored by
the file and SQL stores, and served by the registry. Jobs and steps are
kept as lists so their order is part of the digest.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import InvalidDefinitionError, PipelineError
from .model import (
    Bundle,
    BundleCall,
    Contract,
    Definition,
    InlinedBundle,
    Item,
    Job,
    Param,
    Reference,
    ResolvedBundle,
    ResolvedDefinition,
    Step,
    StepLike,
)

KINDS = ("definition", "bundle")


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def content_digest(item: Item) -> str:
    return "sha256:" + _sha256_str(canonical_json(item_to_dict(item)))


# ----------------------------------------------------------------------
# to dict
# ----------------------------------------------------------------------

def contract_to_dict(contract: Contract) -> Dict[str, dict]:
    out: Dict[str, dict] = {}
    for name, p in contract.items():
        d: Dict[str, Any] = {"type": p.type, "required": p.required}
        if p.default is not None:
            d["default"] = p.default
        if p.description:
            d["description"] = p.description
        out[name] = d
    return out


def step_to_dict(step: StepLike) -> dict:
    if isinstance(step, BundleCall):
        return {"name": step.name, "uses": str(step.uses), "with": dict(step.with_)}
    d: Dict[str, Any] = {"name": step.name, "run": step.run}
    if step.cwd is not None:
        d["cwd"] = step.cwd
    if step.env:
        d["env"] = dict(step.env)
    return d


def job_to_dict(job: Job) -> dict:
    d: Dict[str, Any] = {
        "name": job.name,
        "needs": list(job.needs),
        "steps": [step_to_dict(s) for s in job.steps],
    }
    if job.env:
        d["env"] = dict(job.env)
    if job.timeout is not None:
        d["timeout"] = job.timeout
    if job.condition != "success":
        d["if"] = job.condition
    return d


def item_to_dict(item: Item) -> dict:
    d: Dict[str, Any] = {
        "kind": item.kind,
        "location": item.location,
        "version": item.version,
        "inputs": contract_to_dict(item.inputs),
    }
    if item.description:
        d["description"] = item.description
    if isinstance(item, Definition):
        d["secrets"] = contract_to_dict(item.secrets)
        d["jobs"] = [job_to_dict(j) for j in item.jobs]
    else:
        d["steps"] = [step_to_dict(s) for s in item.steps]
    return d


def _resolved_steps(steps) -> List[dict]:
    out = []
    for s in steps:
        if isinstance(s, InlinedBundle):
            out.append(
                {
                    "name": s.name,
                    "uses": str(s.reference),
                    "digest": s.digest,
                    "with": dict(s.call.with_),
                    "inputs": contract_to_dict(s.inputs),
                    "steps": _resolved_steps(s.steps),
                }
            )
        else:
            out.append(step_to_dict(s))
    return out


def resolved_to_dict(resolved: Union[ResolvedDefinition, ResolvedBundle]) -> dict:
    """Fully expanded form: every bundle call carries its inlined steps."""
    if isinstance(resolved, ResolvedBundle):
        return {
            "kind": "bundle",
            "reference": str(resolved.reference),
            "digest": resolved.digest,
            "inputs": contract_to_dict(resolved.bundle.inputs),
            "steps": _resolved_steps(resolved.steps),
        }

    jobs = []
    for rj in resolved.jobs:
        d = job_to_dict(rj.job)
        d["steps"] = _resolved_steps(rj.steps)
        jobs.append(d)
    return {
        "kind": "definition",
        "reference": str(resolved.reference),
        "digest": resolved.digest,
        "inputs": contract_to_dict(resolved.definition.inputs),
        "secrets": contract_to_dict(resolved.definition.secrets),
        "jobs": jobs,
    }


# ----------------------------------------------------------------------
# from dict (documents: YAML / JSON / registry payloads)
# ----------------------------------------------------------------------

_STEP_KEYS = {"name", "run", "cwd", "env", "uses", "with"}
_JOB_KEYS = {"name", "needs", "env", "timeout", "timeout-minutes", "if", "condition", "steps"}
_ITEM_KEYS = {"kind", "location", "version", "description", "inputs", "secrets", "jobs", "steps"}


def _fail(msg: str, source: Optional[str], **kw: Any) -> InvalidDefinitionError:
    if source:
        kw["source"] = source
    return InvalidDefinitionError(msg, **kw)


def _check_keys(obj: Mapping, allowed: set, what: str, source: Optional[str]) -> None:
    extra = sorted(set(obj) - allowed)
    if extra:
        raise _fail(f"unknown {what} keys: {extra}", source)


def _str_map(obj: Any, what: str, source: Optional[str]) -> Dict[str, str]:
    if obj is None:
        return {}
    if not isinstance(obj, Mapping):
        raise _fail(f"{what} must be a mapping", source)
    return {str(k): str(v) for k, v in obj.items()}


def contract_from_dict(obj: Any, *, secret: bool = False, source: Optional[str] = None) -> Contract:
    """
    Accepts:
      name: string                      (shorthand type)
      name: {type, required, default, description}
      [NAME, ...]                       (secrets only: all required)
    """
    if obj is None:
        return {}
    if isinstance(obj, list):
        if not secret:
            raise _fail("inputs must be a mapping", source)
        return {str(n): Param(type="string", required=True) for n in obj}
    if not isinstance(obj, Mapping):
        raise _fail("contract must be a mapping", source)

    out: Contract = {}
    for name, spec in obj.items():
        if spec is None:
            spec = {}
        if isinstance(spec, str):
            spec = {"type": spec}
        if not isinstance(spec, Mapping):
            raise _fail(f"param {name!r} must be a mapping or a type name", source)
        _check_keys(spec, {"type", "required", "default", "description"}, f"param {name!r}", source)
        out[str(name)] = Param(
            type=spec.get("type", "string"),
            required=bool(spec.get("required", False)),
            default=spec.get("default"),
            description=str(spec.get("description", "") or ""),
        )
    return out


def step_from_dict(obj: Any, *, source: Optional[str] = None) -> StepLike:
    if not isinstance(obj, Mapping):
        raise _fail("step must be a mapping", source)
    _check_keys(obj, _STEP_KEYS, "step", source)

    if "uses" in obj:
        if "run" in obj:
            raise _fail("a step has either 'run' or 'uses', not both", source, step=obj.get("name"))
        ref = Reference.parse(obj["uses"])
        with_ = obj.get("with") or {}
        if not isinstance(with_, Mapping):
            raise _fail("'with' must be a mapping", source, step=obj.get("name"))
        return BundleCall(name=str(obj.get("name") or ref), uses=ref, with_=dict(with_))

    if "run" not in obj:
        raise _fail("step needs 'run' or 'uses'", source, step=obj.get("name"))
    run = str(obj["run"])
    name = obj.get("name") or f"Run {run.splitlines()[0] if run else ''}".strip()
    return Step(
        name=str(name),
        run=run,
        cwd=obj.get("cwd"),
        env=_str_map(obj.get("env"), "step env", source),
    )


def job_from_dict(name: str, obj: Any, *, source: Optional[str] = None) -> Job:
    if not isinstance(obj, Mapping):
        raise _fail(f"job {name!r} must be a mapping", source)
    _check_keys(obj, _JOB_KEYS, f"job {name!r}", source)

    needs = obj.get("needs") or []
    if isinstance(needs, str):
        needs = [needs]

    timeout = obj.get("timeout")
    if timeout is None and obj.get("timeout-minutes") is not None:
        timeout = obj["timeout-minutes"] * 60

    steps = obj.get("steps") or []
    if not isinstance(steps, list):
        raise _fail(f"job {name!r} steps must be a list", source)

    return Job(
        name=str(name),
        steps=[step_from_dict(s, source=source) for s in steps],
        needs=[str(n) for n in needs],
        env=_str_map(obj.get("env"), "job env", source),
        timeout=timeout,
        condition=str(obj.get("if", obj.get("condition", "success"))),
    )


def item_from_dict(doc: Any, *, source: Optional[str] = None) -> Item:
    """Parse one definition/bundle document into a model object."""
    if not isinstance(doc, Mapping):
        raise _fail("document root must be a mapping", source)
    _check_keys(doc, _ITEM_KEYS, "document", source)

    kind = doc.get("kind")
    if kind not in KINDS:
        raise _fail(f"document kind must be one of {KINDS}, got {kind!r}", source)
    for key in ("location", "version"):
        if not doc.get(key):
            raise _fail(f"document is missing {key!r}", source)

    try:
        if kind == "definition":
            if "steps" in doc:
                raise _fail("a definition declares 'jobs', not 'steps'", source)
            raw_jobs = doc.get("jobs") or {}
            if isinstance(raw_jobs, Mapping):
                jobs = [job_from_dict(n, body, source=source) for n, body in raw_jobs.items()]
            elif isinstance(raw_jobs, list):
                jobs = []
                for body in raw_jobs:
                    if not isinstance(body, Mapping) or "name" not in body:
                        raise _fail("jobs given as a list need a 'name' each", source)
                    jobs.append(job_from_dict(body["name"], body, source=source))
            else:
                raise _fail("jobs must be a mapping or a list", source)
            return Definition(
                location=str(doc["location"]),
                version=str(doc["version"]),
                jobs=jobs,
                inputs=contract_from_dict(doc.get("inputs"), source=source),
                secrets=contract_from_dict(doc.get("secrets"), secret=True, source=source),
                description=str(doc.get("description", "") or ""),
            )

        if "jobs" in doc or "secrets" in doc:
            raise _fail("a bundle declares 'steps' and 'inputs' only", source)
        return Bundle(
            location=str(doc["location"]),
            version=str(doc["version"]),
            steps=[step_from_dict(s, source=source) for s in (doc.get("steps") or [])],
            inputs=contract_from_dict(doc.get("inputs"), source=source),
            description=str(doc.get("description", "") or ""),
        )
    except PipelineError as e:
        if source and "source" not in e.details:
            e.details["source"] = source
        raise
