# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .store import DEFAULT_STORE_DIR

DEFAULT_DATABASE_URL = "sqlite:///.reuseci/registry.db"


def _flag(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass(frozen=True)
class Settings:
    store: str = DEFAULT_STORE_DIR
    registry: Optional[str] = None
    max_workers: int = 1
    halt_on_failure: bool = False
    workdir: str = "."
    database_url: str = DEFAULT_DATABASE_URL


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    workers = env.get("REUSECI_MAX_WORKERS")
    return Settings(
        store=env.get("REUSECI_STORE", DEFAULT_STORE_DIR),
        registry=env.get("REUSECI_REGISTRY") or None,
        max_workers=max(1, int(workers)) if workers else default_workers(),
        halt_on_failure=_flag(env.get("REUSECI_HALT_ON_FAILURE")),
        workdir=env.get("REUSECI_WORKDIR", "."),
        database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
    )
