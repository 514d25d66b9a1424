# loader.py
"""
Load definitions and bundles from files.

Supported sources:
  - *.yaml / *.yml   one or more YAML documents (separated by ---)
  - *.json           one document, or a list of documents
  - *.py             a definitions file using the DSL; it must define either
                       definitions() -> list[Definition | Bundle]
                       DEFINITIONS = [Definition | Bundle, ...]
  - a directory      every supported file in it, sorted by path
"""
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Iterable, List, Union

import yaml

from .errors import InvalidDefinitionError
from .model import Bundle, Definition, Item
from .serialize import item_from_dict

YAML_SUFFIXES = (".yaml", ".yml")
SUFFIXES = YAML_SUFFIXES + (".json", ".py")


def load_documents(path: Union[str, Path]) -> List[Any]:
    """Raw documents (dicts) from a YAML or JSON file."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")

    if p.suffix in YAML_SUFFIXES:
        try:
            docs = [d for d in yaml.safe_load_all(text) if d is not None]
        except yaml.YAMLError as e:
            raise InvalidDefinitionError(f"malformed YAML: {e}", source=str(p)) from e
        return docs

    if p.suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidDefinitionError(f"malformed JSON: {e}", source=str(p)) from e
        return data if isinstance(data, list) else [data]

    raise InvalidDefinitionError(f"unsupported document file {p.name!r}", source=str(p))


def load_python(path: Union[str, Path]) -> List[Item]:
    py_path = Path(path).expanduser().resolve()
    module_name = f"reuseci_definitions_{py_path.stem}"
    globals_dict = runpy.run_path(str(py_path), run_name=module_name)

    items = None
    if "definitions" in globals_dict and callable(globals_dict["definitions"]):
        items = globals_dict["definitions"]()
    elif "DEFINITIONS" in globals_dict:
        items = globals_dict["DEFINITIONS"]

    if not isinstance(items, list) or not all(isinstance(i, (Definition, Bundle)) for i in items):
        raise InvalidDefinitionError(
            "definitions file must return/define a list of Definition and Bundle objects. "
            "Define definitions() -> list or DEFINITIONS = [...].",
            source=str(py_path),
        )
    return items


def load_file(path: Union[str, Path]) -> List[Item]:
    p = Path(path)
    if p.suffix == ".py":
        return load_python(p)
    return [item_from_dict(doc, source=str(p)) for doc in load_documents(p)]


def load_path(path: Union[str, Path]) -> List[Item]:
    """Load one file, or every supported file under a directory."""
    p = Path(path).expanduser()
    if not p.exists():
        raise FileNotFoundError(f"definitions path not found: {p}")
    if p.is_dir():
        items: List[Item] = []
        for f in sorted(p.rglob("*")):
            if f.is_file() and f.suffix in SUFFIXES:
                items.extend(load_file(f))
        return items
    return load_file(p)


def load_paths(paths: Iterable[Union[str, Path]]) -> List[Item]:
    items: List[Item] = []
    for path in paths:
        items.extend(load_path(path))
    return items
