"""Re-export selected module outputs as composition-level outputs."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from infragraph.engine.expressions import (
    Expression,
    Index,
    ListConcat,
    Literal,
    OutputRef,
    Scope,
    evaluate,
    output_refs,
    parse_expression,
)
from infragraph.engine.module import ResolvedModule
from infragraph.errors import ConfigError, InvalidExpression, UnknownOutput


@dataclass(frozen=True)
class OutputProjection:
    name: str
    expression: Expression
    description: str = ""

    @classmethod
    def from_dict(cls, name: str, raw: Any) -> "OutputProjection":
        """Accept either a bare expression or ``{value: <expression>, description: ...}``."""
        if isinstance(raw, dict) and "value" in raw:
            return cls(name, parse_expression(raw["value"]), raw.get("description", ""))
        return cls(name, parse_expression(raw))


def _check_permitted(name: str, expr: Expression) -> None:
    if isinstance(expr, OutputRef):
        return
    if isinstance(expr, Index) and isinstance(expr.position, Literal):
        _check_permitted(name, expr.source)
        return
    if isinstance(expr, ListConcat):
        for part in expr.parts:
            _check_permitted(name, part)
        return
    raise InvalidExpression(
        f"output {name!r}: only module output references, list indexing and list concatenation "
        f"can be projected, got {type(expr).__name__}"
    )


class OutputProjector:
    """Maps module outputs to composition output names."""

    def __init__(self, projections: Iterable[OutputProjection]) -> None:
        self._projections: dict[str, OutputProjection] = {}
        for projection in projections:
            if projection.name in self._projections:
                raise ConfigError(f"output {projection.name!r} declared more than once")
            _check_permitted(projection.name, projection.expression)
            self._projections[projection.name] = projection

    @property
    def projections(self) -> list[OutputProjection]:
        return list(self._projections.values())

    def sources(self) -> list[OutputRef]:
        return [ref for p in self._projections.values() for ref in output_refs(p.expression)]

    def project(self, resolved: Mapping[str, ResolvedModule]) -> dict[str, Any]:
        """Evaluate each projection; raise UnknownOutput for a source missing after resolution."""
        for ref in self.sources():
            module = resolved.get(ref.module)
            if module is None or ref.output not in module.outputs:
                raise UnknownOutput(ref.module, ref.output)

        scope = Scope(outputs={name: module.outputs for name, module in resolved.items()})
        return {name: evaluate(p.expression, scope) for name, p in self._projections.items()}
