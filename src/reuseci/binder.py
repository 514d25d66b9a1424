# binder.py
from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional

from .errors import MissingRequiredInputError, TypeMismatchError, UnknownInputError
from .model import Contract, Secret, matches_type, type_name

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


class ResolvedBindings(Mapping[str, Any]):
    """Read-only result of binding values against a contract."""

    def __init__(self, values: Dict[str, Any], *, secret: bool = False):
        self._values = dict(values)
        self.secret = secret

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def secrets(self) -> List[Secret]:
        return [v for v in self._values.values() if isinstance(v, Secret)]

    def __repr__(self) -> str:
        shown = {k: (Secret.MASK if isinstance(v, Secret) else v) for k, v in self._values.items()}
        return f"ResolvedBindings({shown!r})"


def _coerce(key: str, value: str, expected: str, ctx: dict) -> Any:
    text = value.strip()
    if expected == "boolean":
        if text.lower() in _TRUE:
            return True
        if text.lower() in _FALSE:
            return False
    elif expected == "number":
        try:
            return int(text)
        except ValueError:
            try:
                return float(text)
            except ValueError:
                pass
    raise TypeMismatchError(key, expected, f"string {value!r}", **ctx)


def bind(
    contract: Contract,
    bindings: Optional[Mapping[str, Any]] = None,
    *,
    secret: bool = False,
    coerce: bool = False,
    owner: Optional[str] = None,
) -> ResolvedBindings:
    """
    Check caller-supplied values against a contract.

    - unknown keys   -> UnknownInputError
    - missing keys   -> MissingRequiredInputError (required) / default / None
    - wrong types    -> TypeMismatchError
    With secret=True every value is wrapped in an opaque Secret.
    With coerce=True strings are converted to number/boolean params.
    """
    supplied = dict(bindings or {})
    ctx: Dict[str, Any] = {"reference": owner} if owner else {}

    unknown = sorted(k for k in supplied if k not in contract)
    if unknown:
        raise UnknownInputError(unknown[0], known=sorted(contract), **ctx)

    values: Dict[str, Any] = {}
    for name, param in contract.items():
        value = supplied.get(name)

        if value is None:
            if param.required:
                raise MissingRequiredInputError(name, **ctx)
            default = param.default
            values[name] = Secret(default) if secret and default is not None else default
            continue

        if secret:
            if not isinstance(value, (str, Secret)):
                raise TypeMismatchError(name, "string", type_name(value), **ctx)
            values[name] = value if isinstance(value, Secret) else Secret(value)
            continue

        if coerce and isinstance(value, str) and param.type != "string":
            value = _coerce(name, value, param.type, ctx)
        if not matches_type(value, param.type):
            raise TypeMismatchError(name, param.type, type_name(value), **ctx)
        values[name] = value

    return ResolvedBindings(values, secret=secret)
