# store.py
from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, Union

from .errors import NotFoundError, VersionImmutabilityError
from .model import Item, Reference
from .serialize import content_digest, item_from_dict, item_to_dict

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# A published tag is a permanent pointer:
#   (location, version) -> (document, digest)
#   digest = sha256(canonical json of the document)
#
# Publishing the same content twice is a no-op. Publishing different
# content under an existing tag is rejected. Nothing is ever deleted or
# overwritten, so readers never need a lock.
# ---------------------------------------------------------------------


DEFAULT_STORE_DIR = ".reuseci/store"


@dataclass(frozen=True)
class Published:
    item: Item
    digest: str  # digest recorded at publish time


class DefinitionStore(Protocol):
    def publish(self, item: Item) -> str: ...

    def fetch(self, reference: Reference) -> Published: ...

    def versions(self, location: str) -> List[str]: ...


def publish_all(store: DefinitionStore, items: Iterable[Item]) -> Dict[str, str]:
    """Publish several items; returns {reference: digest}."""
    return {str(item.reference): store.publish(item) for item in items}


class MemoryDefinitionStore:
    """Process-local store. Safe for concurrent readers and publishers."""

    def __init__(self, items: Iterable[Item] = ()):
        self._lock = threading.Lock()
        self._items: Dict[Reference, Published] = {}
        for item in items:
            self.publish(item)

    def publish(self, item: Item) -> str:
        ref = item.reference
        digest = content_digest(item)
        with self._lock:
            existing = self._items.get(ref)
            if existing is not None:
                if existing.digest != digest:
                    raise VersionImmutabilityError(str(ref), existing.digest, digest)
                return digest
            self._items[ref] = Published(item=item, digest=digest)
        return digest

    def fetch(self, reference: Reference) -> Published:
        try:
            return self._items[reference]
        except KeyError:
            raise NotFoundError(str(reference)) from None

    def versions(self, location: str) -> List[str]:
        return sorted(r.version for r in list(self._items) if r.location == location)

    def __contains__(self, reference: object) -> bool:
        return reference in self._items

    def __len__(self) -> int:
        return len(self._items)


class LocalDefinitionStore:
    """
    File-based store:
      root/
        <owner>/<name>/.../
          <version>.json      {"digest": ..., "document": {...}}
    """

    def __init__(self, root: Union[str, Path] = DEFAULT_STORE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _dir(self, location: str) -> Path:
        return self.root.joinpath(*location.split("/"))

    def path_for(self, reference: Reference) -> Path:
        return self._dir(reference.location) / f"{reference.version}.json"

    def _read(self, path: Path) -> dict:
        return json.loads(path.read_text(encoding="utf-8"))

    def _check_stored(self, ref: Reference, path: Path, digest: str) -> str:
        stored = self._read(path).get("digest", "")
        if stored != digest:
            raise VersionImmutabilityError(str(ref), stored, digest)
        return digest

    def publish(self, item: Item) -> str:
        ref = item.reference
        digest = content_digest(item)
        path = self.path_for(ref)

        with self._lock:
            if path.exists():
                return self._check_stored(ref, path, digest)

            path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"digest": digest, "document": item_to_dict(item)}
            fd, tmp_name = tempfile.mkstemp(prefix=f".{ref.version}.", suffix=".tmp", dir=path.parent)
            tmp = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False))
                # link() fails if the tag exists, so only one publisher (in any process) claims it
                try:
                    os.link(tmp, path)
                except FileExistsError:
                    return self._check_stored(ref, path, digest)
            finally:
                tmp.unlink(missing_ok=True)
        return digest

    def fetch(self, reference: Reference) -> Published:
        path = self.path_for(reference)
        if not path.is_file():
            raise NotFoundError(str(reference))
        raw = self._read(path)
        item = item_from_dict(raw.get("document"), source=str(path))
        return Published(item=item, digest=str(raw.get("digest", "")))

    def versions(self, location: str) -> List[str]:
        d = self._dir(location)
        if not d.is_dir():
            return []
        return sorted(p.stem for p in d.glob("*.json"))

    def __contains__(self, reference: object) -> bool:
        return isinstance(reference, Reference) and self.path_for(reference).is_file()
