# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterator, List, Protocol, Sequence, Set, Tuple

from .errors import CycleError, InvalidDefinitionError, UnknownDependencyError


class _HasJobs(Protocol):
    jobs: Sequence


@dataclass(frozen=True)
class JobGraph:
    """
    DAG of jobs.

    adj:    job -> jobs that need it (edges point downstream)
    levels: level 0 = jobs with no needs, level n = jobs whose needs all sit
            in levels < n. Jobs of one level can run in parallel.
    """
    jobs: Dict[str, object]
    adj: Dict[str, Set[str]]
    needs_of: Dict[str, Tuple[str, ...]]
    levels: List[List[str]]

    def needs(self, name: str) -> Tuple[str, ...]:
        return self.needs_of[name]

    def dependents(self, name: str) -> List[str]:
        return [n for n in self.jobs if n in self.adj[name]]

    def level_of(self, name: str) -> int:
        for i, level in enumerate(self.levels):
            if name in level:
                return i
        raise KeyError(name)

    @property
    def order(self) -> List[str]:
        return [n for level in self.levels for n in level]

    def __iter__(self) -> Iterator[str]:
        return iter(self.jobs)

    def __len__(self) -> int:
        return len(self.jobs)


def build_dag(jobs: Sequence) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build adjacency + in-degree from job-like objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must run BEFORE this job)
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise InvalidDefinitionError(f"duplicate job names: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs or []:
            if need not in name_set:
                raise UnknownDependencyError(job.name, need, name_set)
            # Edge need -> job.name (need must run before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def _find_cycle(stuck: Sequence[str], adj: Dict[str, Set[str]]) -> List[str]:
    # every stuck job has at least one stuck need, so walking needs must loop
    path: List[str] = []
    seen: Dict[str, int] = {}
    node = stuck[0]
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = next(n for n in stuck if node in adj[n])
    cycle = path[seen[node]:]
    cycle.reverse()  # upstream -> downstream
    return cycle + [cycle[0]]


def topo_levels(order: Sequence[str], adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Kahn's algorithm, one level at a time. Within a level jobs keep their
    declaration order.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    position = {n: i for i, n in enumerate(order)}
    q = deque(n for n in order if indeg[n] == 0)

    levels: List[List[str]] = []
    processed = 0

    while q:
        level = sorted(q, key=position.__getitem__)
        q.clear()
        for node in level:
            processed += 1
            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    if processed != len(indeg):
        stuck = [n for n in order if indeg[n] > 0]
        raise CycleError(_find_cycle(stuck, adj), what="job needs", stuck=stuck)

    return levels


def build(definition: _HasJobs) -> JobGraph:
    """Expand a (resolved) definition into a JobGraph with levels."""
    jobs = list(definition.jobs)
    adj, indeg = build_dag(jobs)
    order = [j.name for j in jobs]
    needs_of = {j.name: tuple(dict.fromkeys(j.needs or [])) for j in jobs}

    levels = topo_levels(order, adj, indeg)

    return JobGraph(
        jobs={j.name: j for j in jobs},
        adj=adj,
        needs_of=needs_of,
        levels=levels,
    )
