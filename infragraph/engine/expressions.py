"""Closed expression algebra for input bindings, resource arguments and outputs.

Expressions are parsed once from YAML into the node types below and evaluated
by a single interpreter, ``evaluate``. There is no free-form text substitution.

YAML forms:

    plain scalar / list / mapping     -> Literal (or ListOf / MapOf when it nests an expression)
    {var: name}                       -> VarRef
    {ref: "module.output"}            -> OutputRef
    {attr: [resource, attribute]}     -> ResourceAttr
    {index: [expr, n]}                -> Index (n may itself be an expression, e.g. {var: count.index})
    {concat: [expr, ...]}             -> Concat (strings)
    {listConcat: [expr, ...]}         -> ListConcat
    {toJson: expr}                    -> ToJson (JSON text, e.g. an IAM policy document)
"""

import copy
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from infragraph.errors import InvalidExpression, TypeMismatch, UnresolvedReference


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class VarRef:
    name: str


@dataclass(frozen=True)
class OutputRef:
    module: str
    output: str

    def __str__(self) -> str:
        return f"{self.module}.{self.output}"


@dataclass(frozen=True)
class ResourceAttr:
    resource: str
    attribute: str


@dataclass(frozen=True)
class Index:
    source: "Expression"
    position: "Expression"


@dataclass(frozen=True)
class Concat:
    parts: tuple["Expression", ...]


@dataclass(frozen=True)
class ListConcat:
    parts: tuple["Expression", ...]


@dataclass(frozen=True)
class ToJson:
    source: "Expression"


@dataclass(frozen=True)
class ListOf:
    items: tuple["Expression", ...]


@dataclass(frozen=True)
class MapOf:
    items: tuple[tuple[str, "Expression"], ...]


Expression = Union[Literal, VarRef, OutputRef, ResourceAttr, Index, Concat, ListConcat, ToJson, ListOf, MapOf]

EXPRESSION_TYPES = (Literal, VarRef, OutputRef, ResourceAttr, Index, Concat, ListConcat, ToJson, ListOf, MapOf)


@dataclass(frozen=True)
class Deferred:
    """Attribute of a resource that is only known once the provisioning engine applies it."""

    module: str
    resource: str
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.module}.{self.resource}.{self.attribute}}}"


@dataclass(frozen=True)
class Interpolated:
    """String built by concat from literal text and deferred attributes."""

    parts: tuple[Union[str, Deferred], ...]

    def __str__(self) -> str:
        return "".join(str(part) for part in self.parts)


@dataclass(frozen=True)
class Scope:
    """Names visible to an expression.

    ``variables`` are top-level variables, or a module's own inputs when
    evaluating inside a module. ``outputs`` maps module name to its resolved
    outputs. ``module`` and ``resources`` are set only inside a module;
    ``resources`` maps each resource name to its count (``None`` when not counted).
    """

    variables: Mapping[str, Any] = field(default_factory=dict)
    outputs: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    module: str | None = None
    resources: Mapping[str, int | None] | None = None

    def describe(self) -> str:
        return f"module {self.module!r}" if self.module else "composition"


def _parse_var(raw: Any) -> VarRef:
    if not isinstance(raw, str) or not raw:
        raise InvalidExpression(f"var must name a variable, got {raw!r}")
    return VarRef(raw)


def _parse_ref(raw: Any) -> OutputRef:
    if not isinstance(raw, str) or "." not in raw:
        raise InvalidExpression(f"ref must be 'module.output', got {raw!r}")
    module, output = raw.split(".", 1)
    if not module or not output:
        raise InvalidExpression(f"ref must be 'module.output', got {raw!r}")
    return OutputRef(module, output)


def _parse_attr(raw: Any) -> ResourceAttr:
    if isinstance(raw, str) and "." in raw:
        raw = raw.split(".", 1)
    if not isinstance(raw, list) or len(raw) != 2 or not all(isinstance(p, str) and p for p in raw):
        raise InvalidExpression(f"attr must be [resource, attribute], got {raw!r}")
    return ResourceAttr(raw[0], raw[1])


def _parse_index(raw: Any) -> Index:
    if not isinstance(raw, list) or len(raw) != 2:
        raise InvalidExpression(f"index must be [expression, position], got {raw!r}")
    position = raw[1]
    if isinstance(position, bool) or not isinstance(position, (int, dict)):
        raise InvalidExpression(f"index position must be an integer or an expression, got {position!r}")
    return Index(parse_expression(raw[0]), parse_expression(position))


def _parse_parts(key: str, raw: Any) -> tuple[Expression, ...]:
    if not isinstance(raw, list) or not raw:
        raise InvalidExpression(f"{key} takes a non-empty list, got {raw!r}")
    return tuple(parse_expression(p) for p in raw)


_FORMS = {
    "var": _parse_var,
    "ref": _parse_ref,
    "attr": _parse_attr,
    "index": _parse_index,
    "concat": lambda raw: Concat(_parse_parts("concat", raw)),
    "listConcat": lambda raw: ListConcat(_parse_parts("listConcat", raw)),
    "toJson": lambda raw: ToJson(parse_expression(raw)),
}


def parse_expression(raw: Any) -> Expression:
    """Parse a YAML value into an expression tree."""
    if isinstance(raw, EXPRESSION_TYPES):
        return raw
    if isinstance(raw, dict):
        if len(raw) == 1:
            key = next(iter(raw))
            if key in _FORMS:
                return _FORMS[key](raw[key])
        items = tuple((str(k), parse_expression(v)) for k, v in raw.items())
        if all(isinstance(v, Literal) for _, v in items):
            return Literal({k: v.value for k, v in items})
        return MapOf(items)
    if isinstance(raw, list):
        parsed = tuple(parse_expression(item) for item in raw)
        if all(isinstance(item, Literal) for item in parsed):
            return Literal([item.value for item in parsed])
        return ListOf(parsed)
    return Literal(raw)


def children(expr: Expression) -> tuple[Expression, ...]:
    if isinstance(expr, Index):
        return (expr.source, expr.position)
    if isinstance(expr, ToJson):
        return (expr.source,)
    if isinstance(expr, (Concat, ListConcat)):
        return expr.parts
    if isinstance(expr, ListOf):
        return expr.items
    if isinstance(expr, MapOf):
        return tuple(v for _, v in expr.items)
    return ()


def walk(expr: Expression) -> Iterator[Expression]:
    """Yield ``expr`` and every nested expression, depth first."""
    yield expr
    for child in children(expr):
        yield from walk(child)


def output_refs(expr: Expression) -> list[OutputRef]:
    return [node for node in walk(expr) if isinstance(node, OutputRef)]


def variable_refs(expr: Expression) -> list[str]:
    return [node.name for node in walk(expr) if isinstance(node, VarRef)]


def resource_refs(expr: Expression) -> list[ResourceAttr]:
    return [node for node in walk(expr) if isinstance(node, ResourceAttr)]


def _stringify(value: Any, scope: Scope) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise TypeMismatch(f"concat expects scalar parts, got {type(value).__name__} ({scope.describe()})")


def _reject_deferred(value: Any) -> Any:
    if isinstance(value, (Deferred, Interpolated)):
        raise TypeError(f"cannot serialize {value}, which is only known after apply")
    raise TypeError(f"cannot serialize {type(value).__name__}")


def evaluate(expr: Expression, scope: Scope) -> Any:
    """Evaluate an expression tree against ``scope``."""
    if isinstance(expr, Literal):
        return copy.deepcopy(expr.value)

    if isinstance(expr, VarRef):
        if expr.name not in scope.variables:
            raise UnresolvedReference(f"unknown variable {expr.name!r} in {scope.describe()}")
        return copy.deepcopy(scope.variables[expr.name])

    if isinstance(expr, OutputRef):
        if expr.module not in scope.outputs:
            raise UnresolvedReference(f"reference {expr} in {scope.describe()} names unknown module {expr.module!r}")
        outputs = scope.outputs[expr.module]
        if expr.output not in outputs:
            raise UnresolvedReference(f"module {expr.module!r} has no output {expr.output!r}")
        return copy.deepcopy(outputs[expr.output])

    if isinstance(expr, ResourceAttr):
        if scope.module is None:
            raise InvalidExpression(f"resource attribute {expr.resource}.{expr.attribute} used outside a module")
        if scope.resources is None:
            return Deferred(scope.module, expr.resource, expr.attribute)
        if expr.resource not in scope.resources:
            raise UnresolvedReference(f"module {scope.module!r} declares no resource {expr.resource!r}")
        count = scope.resources[expr.resource]
        if count is None:
            return Deferred(scope.module, expr.resource, expr.attribute)
        return [Deferred(scope.module, f"{expr.resource}-{i}", expr.attribute) for i in range(count)]

    if isinstance(expr, Index):
        source = evaluate(expr.source, scope)
        if not isinstance(source, list):
            raise TypeMismatch(f"index expects a list, got {type(source).__name__} ({scope.describe()})")
        position = evaluate(expr.position, scope)
        if isinstance(position, bool) or not isinstance(position, int):
            raise TypeMismatch(f"index position must be an integer, got {position!r} ({scope.describe()})")
        if not 0 <= position < len(source):
            raise TypeMismatch(f"index {position} out of range for list of {len(source)} ({scope.describe()})")
        return source[position]

    if isinstance(expr, Concat):
        parts: list[Union[str, Deferred]] = []
        for part in expr.parts:
            value = evaluate(part, scope)
            if isinstance(value, Interpolated):
                parts.extend(value.parts)
            elif isinstance(value, Deferred):
                parts.append(value)
            else:
                parts.append(_stringify(value, scope))
        if not any(isinstance(p, Deferred) for p in parts):
            return "".join(str(p) for p in parts)
        merged: list[Union[str, Deferred]] = []
        for p in parts:
            if isinstance(p, str) and merged and isinstance(merged[-1], str):
                merged[-1] += p
            elif p != "":
                merged.append(p)
        return Interpolated(tuple(merged))

    if isinstance(expr, ListConcat):
        result: list[Any] = []
        for part in expr.parts:
            value = evaluate(part, scope)
            if not isinstance(value, list):
                raise TypeMismatch(f"listConcat expects lists, got {type(value).__name__} ({scope.describe()})")
            result.extend(value)
        return result

    if isinstance(expr, ToJson):
        document = evaluate(expr.source, scope)
        try:
            return json.dumps(document, default=_reject_deferred)
        except TypeError as e:
            raise TypeMismatch(f"toJson: {e} ({scope.describe()})") from e

    if isinstance(expr, ListOf):
        return [evaluate(item, scope) for item in expr.items]

    if isinstance(expr, MapOf):
        return {key: evaluate(value, scope) for key, value in expr.items}

    raise InvalidExpression(f"not an expression: {expr!r}")
