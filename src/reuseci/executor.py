# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Dict, Optional, Protocol, Tuple, Union

from .errors import JobTimeoutError, RunCancelledError
from .expressions import mask
from .model import Secret

OUTPUT_TAIL = 4000
POLL_INTERVAL = 0.05
READ_CHUNK = 65536


@dataclass(frozen=True)
class StepInvocation:
    """Everything an executor needs to run one step. Secrets stay opaque."""
    job: str
    step: str
    run: str
    cwd: Optional[str] = None
    env: Dict[str, Union[str, Secret]] = field(default_factory=dict)
    secrets: Tuple[Secret, ...] = ()  # values to mask in output
    deadline: Optional[float] = None  # time.monotonic() value
    job_timeout: Optional[float] = None
    cancel: threading.Event = field(default_factory=threading.Event)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()


@dataclass(frozen=True)
class StepOutcome:
    exit_code: int
    output: str = ""


class StepExecutor(Protocol):
    """
    The external runner. Returns the step's exit status + captured output.
    Should honour invocation.cancel and invocation.deadline, raising
    RunCancelledError / JobTimeoutError when it stops early.
    """

    def run(self, invocation: StepInvocation) -> StepOutcome: ...


class ShellExecutor:
    """Run steps with the system shell, relative to a working directory."""

    def __init__(self, workdir: Union[str, Path] = ".", *, inherit_env: bool = True):
        self.workdir = Path(workdir).resolve()
        self.inherit_env = inherit_env

    def _env(self, inv: StepInvocation) -> Dict[str, str]:
        env = os.environ.copy() if self.inherit_env else {}
        env.update({k: v.reveal() if isinstance(v, Secret) else v for k, v in inv.env.items()})
        return env

    def run(self, inv: StepInvocation) -> StepOutcome:
        cwd = (self.workdir / (inv.cwd or ".")).resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"[{inv.job}] step '{inv.step}' cwd not found: {cwd}")

        proc = subprocess.Popen(
            inv.run,
            shell=True,
            cwd=str(cwd),
            env=self._env(inv),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
        tail = _OutputTail()
        reader = threading.Thread(target=tail.drain, args=(proc.stdout,), daemon=True)
        reader.start()

        stopped = self._wait(proc, reader, inv)
        output = mask(tail.text(), inv.secrets)[-OUTPUT_TAIL:]

        if stopped == "timeout":
            raise JobTimeoutError(inv.job, inv.job_timeout or 0, step=inv.step)
        if stopped == "cancel":
            raise RunCancelledError("run cancelled", job=inv.job, step=inv.step)
        return StepOutcome(exit_code=proc.returncode, output=output)

    def _wait(self, proc: subprocess.Popen, reader: threading.Thread, inv: StepInvocation) -> Optional[str]:
        # done once the process exited and its output pipe hit EOF
        while True:
            reader.join(POLL_INTERVAL)
            if not reader.is_alive():
                try:
                    proc.wait(timeout=POLL_INTERVAL)
                    return None
                except subprocess.TimeoutExpired:
                    pass

            reason = None
            if inv.cancel.is_set():
                reason = "cancel"
            else:
                remaining = inv.remaining()
                if remaining is not None and remaining <= 0:
                    reason = "timeout"
            if reason is None:
                continue

            _kill(proc)
            proc.wait()
            reader.join()
            return reason


class _OutputTail:
    """Keeps only the last bytes of a stream; decoded once, invalid UTF-8 replaced."""

    def __init__(self, limit: int = OUTPUT_TAIL * 4):
        # 4 bytes per character keeps at least OUTPUT_TAIL characters of UTF-8
        self.limit = limit
        self._buf = bytearray()

    def drain(self, stream: IO[bytes]) -> None:
        with stream:
            for chunk in iter(lambda: stream.read1(READ_CHUNK), b""):
                self._buf.extend(chunk)
                del self._buf[:-self.limit]

    def text(self) -> str:
        return bytes(self._buf).decode("utf-8", errors="replace")


def _kill(proc: subprocess.Popen) -> None:
    # the step runs in its own session; take down the whole process group
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
