"""Tests for the job graph builder."""
from types import SimpleNamespace

import pytest

from reuseci.dag import build
from reuseci.dsl import definition, job, sh
from reuseci.errors import CycleError, InvalidDefinitionError, UnknownDependencyError


def _graph(**needs):
    """_graph(a=[], b=["a"]) -> a definition-like object with those jobs, in that order."""
    jobs = [SimpleNamespace(name=n, needs=list(deps)) for n, deps in needs.items()]
    return SimpleNamespace(jobs=jobs)


def test_levels_follow_needs():
    g = build(_graph(a=[], b=["a"], c=["a"], d=["b", "c"], e=[]))
    assert g.levels == [["a", "e"], ["b", "c"], ["d"]]
    assert g.order == ["a", "e", "b", "c", "d"]
    assert g.needs("d") == ("b", "c")
    assert g.dependents("a") == ["b", "c"]
    assert g.level_of("d") == 2
    assert list(g) == ["a", "b", "c", "d", "e"]
    assert len(g) == 5


def test_level_keeps_declaration_order():
    g = build(_graph(z=[], y=[], x=["z", "y"]))
    assert g.levels == [["z", "y"], ["x"]]


def test_builds_from_definition():
    d = definition(
        "acme/ci@v1",
        job("test", sh("t", "ok"), needs=["lint"]),
        job("lint", sh("l", "ok")),
    )
    assert build(d).levels == [["lint"], ["test"]]


def test_duplicate_needs_counted_once():
    g = build(_graph(a=[], b=["a", "a"]))
    assert g.levels == [["a"], ["b"]]
    assert g.needs("b") == ("a",)


def test_cycle_rejected_with_jobs_on_cycle():
    with pytest.raises(CycleError) as exc:
        build(_graph(a=[], b=["a", "d"], c=["b"], d=["c"], e=["d"]))
    cycle = exc.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"b", "c", "d"}
    assert "a" not in exc.value.details["stuck"]


def test_self_dependency_is_a_cycle():
    with pytest.raises(CycleError) as exc:
        build(_graph(a=["a"]))
    assert exc.value.cycle == ["a", "a"]


def test_unknown_dependency():
    with pytest.raises(UnknownDependencyError) as exc:
        build(_graph(a=[], b=["nope"]))
    assert exc.value.job == "b"
    assert exc.value.dependency == "nope"


def test_duplicate_job_names():
    g = SimpleNamespace(jobs=[SimpleNamespace(name="a", needs=[]), SimpleNamespace(name="a", needs=[])])
    with pytest.raises(InvalidDefinitionError):
        build(g)
