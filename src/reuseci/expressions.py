# expressions.py
from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .errors import InvalidDefinitionError, UnknownInputError
from .model import Secret

# ${{ inputs.name }} / ${{ secrets.NAME }}
EXPR = re.compile(r"\$\{\{\s*([A-Za-z_][\w-]*)\.([A-Za-z_][\w-]*)\s*\}\}")
SCOPES = ("inputs", "secrets")

Scopes = Mapping[str, Mapping[str, Any]]


def references(template: Any) -> List[Tuple[str, str]]:
    """(scope, name) pairs used by a template, in order of appearance."""
    if not isinstance(template, str):
        return []
    return [(m.group(1), m.group(2)) for m in EXPR.finditer(template)]


def secret_names(templates: Iterable[Any]) -> List[str]:
    out: List[str] = []
    for t in templates:
        for scope, name in references(t):
            if scope == "secrets" and name not in out:
                out.append(name)
    return out


def check(template: Any, scopes: Scopes, **ctx: Any) -> None:
    """Fail on scopes or names the template cannot see."""
    for scope, name in references(template):
        if scope not in scopes:
            raise InvalidDefinitionError(
                f"expression scope '{scope}' is not available here (expected one of {sorted(scopes)})",
                **ctx,
            )
        if name not in scopes[scope]:
            raise UnknownInputError(f"{scope}.{name}", **ctx)


def to_text(value: Any, *, reveal: bool = False) -> str:
    if isinstance(value, Secret):
        return value.reveal() if reveal else str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def render(template: Any, scopes: Scopes, *, reveal: bool = False) -> Any:
    """
    Substitute expressions.

    - non-strings are returned unchanged
    - a template that is exactly one expression yields the bound value
      itself (type and secret opacity kept), unless reveal=True
    - mixed text yields a string; when a secret went into it the result is
      wrapped as a Secret again (unless reveal=True)
    """
    if not isinstance(template, str):
        return template

    whole = EXPR.fullmatch(template.strip())
    if whole is not None and not reveal:
        return _lookup(scopes, whole.group(1), whole.group(2))

    used_secret = False

    def sub(m: "re.Match[str]") -> str:
        nonlocal used_secret
        value = _lookup(scopes, m.group(1), m.group(2))
        if isinstance(value, Secret):
            used_secret = True
            return value.reveal()
        return to_text(value)

    text = EXPR.sub(sub, template)
    if used_secret and not reveal:
        return Secret(text)
    return text


def _lookup(scopes: Scopes, scope: str, name: str) -> Any:
    try:
        return scopes[scope][name]
    except KeyError:
        raise UnknownInputError(f"{scope}.{name}") from None


def mask(text: Optional[str], secrets: Iterable[Secret]) -> str:
    """Replace every secret value in text with the mask."""
    if not text:
        return text or ""
    for s in sorted({s.reveal() for s in secrets if s.reveal()}, key=len, reverse=True):
        text = text.replace(s, Secret.MASK)
    return text
