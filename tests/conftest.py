"""Shared fixtures for ReuseCI tests."""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional

import pytest

from reuseci.errors import RunCancelledError
from reuseci.executor import StepInvocation, StepOutcome
from reuseci.store import MemoryDefinitionStore
from reuseci.ui.console import Console, set_console


class FakeExecutor:
    """
    Step executor that interprets `run` as a tiny command language:

        ok | echo TEXT | fail [TEXT] | exit N | sleep SECONDS

    `hooks` maps a run string to a callable taking the invocation.
    """

    def __init__(self, hooks: Optional[Dict[str, Callable[[StepInvocation], StepOutcome]]] = None):
        self.hooks = hooks or {}
        self.calls: List[StepInvocation] = []
        self._lock = threading.Lock()

    @property
    def commands(self) -> List[str]:
        return [c.run for c in self.calls]

    def steps_of(self, job: str) -> List[str]:
        return [c.step for c in self.calls if c.job == job]

    def run(self, inv: StepInvocation) -> StepOutcome:
        with self._lock:
            self.calls.append(inv)
        if inv.run in self.hooks:
            return self.hooks[inv.run](inv)

        cmd, _, arg = inv.run.partition(" ")
        if cmd == "echo":
            return StepOutcome(0, arg)
        if cmd == "fail":
            return StepOutcome(1, arg)
        if cmd == "exit":
            return StepOutcome(int(arg))
        if cmd == "sleep":
            end = time.monotonic() + float(arg)
            while time.monotonic() < end:
                if inv.cancel.is_set():
                    raise RunCancelledError("run cancelled", job=inv.job, step=inv.step)
                time.sleep(0.01)
        return StepOutcome(0, "")


@pytest.fixture(autouse=True)
def quiet_console():
    """Keep scheduler chatter out of test output."""
    console = Console(quiet=True)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def store() -> MemoryDefinitionStore:
    return MemoryDefinitionStore()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()
