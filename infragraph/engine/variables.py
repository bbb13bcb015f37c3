"""Value resolution for composition variables and module inputs."""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

import pulumi

from infragraph.engine.expressions import Deferred, Interpolated
from infragraph.errors import (
    ArityMismatch,
    ConfigError,
    MissingRequiredValue,
    TypeMismatch,
    UnresolvedReference,
)


class _Unset:
    """Marker for "no value supplied" (``None`` is a legitimate value)."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class VarType(str, Enum):
    """Declared variable type. An undeclared type accepts any value."""

    SCALAR = "scalar"
    LIST = "list"


@dataclass(frozen=True)
class Variable:
    """A declared variable: top-level in a composition, or an input of a module."""

    name: str
    type: VarType | None = None
    default: Any = UNSET
    length: int | None = None
    corresponds_to: str | None = None
    description: str = ""

    @property
    def required(self) -> bool:
        return self.default is UNSET

    @classmethod
    def from_dict(cls, name: str, raw: Mapping[str, Any] | None) -> "Variable":
        """Build from a YAML declaration such as ``{type: list, default: [...], correspondsTo: azs}``."""
        raw = raw or {}
        type_name = raw.get("type")
        try:
            var_type = VarType(type_name) if type_name is not None else None
        except ValueError as e:
            raise ConfigError(f"variable {name!r}: unknown type {type_name!r}") from e
        return cls(
            name=name,
            type=var_type,
            default=raw.get("default", UNSET),
            length=raw.get("length"),
            corresponds_to=raw.get("correspondsTo"),
            description=raw.get("description", ""),
        )


def _check_type(variable: Variable, value: Any, owner: str | None) -> None:
    where = f" of module {owner!r}" if owner else ""
    if variable.type is VarType.LIST and not isinstance(value, list):
        raise TypeMismatch(f"{variable.name!r}{where} is declared as a list, got {type(value).__name__}")
    if variable.type is VarType.SCALAR and not (
        value is None or isinstance(value, (str, int, float, bool, Deferred, Interpolated))
    ):
        raise TypeMismatch(f"{variable.name!r}{where} is declared as a scalar, got {type(value).__name__}")


def check_arity(name: str, value: Any, expected: int, owner: str | None = None, reason: str = "") -> None:
    """Raise ArityMismatch unless ``value`` is a list of exactly ``expected`` elements."""
    actual = len(value) if isinstance(value, list) else 1
    if actual != expected:
        raise ArityMismatch(name, expected, actual, owner=owner, reason=reason)


def resolve_value(variable: Variable, override: Any = UNSET, owner: str | None = None) -> Any:
    """Return the override if present, else the default, else raise MissingRequiredValue."""
    if override is not UNSET:
        value = override
    elif not variable.required:
        value = variable.default
    else:
        raise MissingRequiredValue(variable.name, owner)

    _check_type(variable, value, owner)
    if variable.length is not None:
        check_arity(variable.name, value, variable.length, owner, reason="declared length")
    return list(value) if isinstance(value, list) else value


def check_correspondence(
    declarations: Mapping[str, Variable],
    values: Mapping[str, Any],
    owner: str | None = None,
) -> None:
    """Enforce ``correspondsTo``: a list must hold one element per element of the list it names."""
    for name, variable in declarations.items():
        target = variable.corresponds_to
        if target is None:
            continue
        if target not in declarations:
            where = f"module {owner!r}" if owner else "composition"
            raise UnresolvedReference(f"{name!r} in {where} corresponds to undeclared {target!r}")
        anchor = values[target]
        expected = len(anchor) if isinstance(anchor, list) else 1
        check_arity(name, values[name], expected, owner, reason=f"one per element of {target!r}")


def resolve_variables(
    declarations: Mapping[str, Variable],
    overrides: Mapping[str, Any] | None = None,
) -> Mapping[str, Any]:
    """Resolve every top-level variable, in declaration order, into a read-only mapping."""
    overrides = overrides or {}
    unknown = sorted(set(overrides) - set(declarations))
    if unknown:
        raise UnresolvedReference(f"override(s) for undeclared variable(s): {', '.join(unknown)}")

    resolved: dict[str, Any] = {}
    for name, variable in declarations.items():
        override = overrides.get(name, UNSET)
        resolved[name] = resolve_value(variable, override)
        source = "override" if override is not UNSET else "default"
        pulumi.log.debug(f"variable {name!r} resolved from {source}")

    check_correspondence(declarations, resolved)
    return MappingProxyType(resolved)
