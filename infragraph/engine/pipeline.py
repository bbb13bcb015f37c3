"""Single-pass resolution pipeline.

Load -> ResolveVariables -> BuildGraph -> TopologicalEvaluate -> ProjectOutputs -> Done.
Any failure aborts the whole run; nothing is partially applied.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pulumi

from infragraph.engine.expressions import Deferred, Interpolated
from infragraph.engine.graph import CompositionGraph, Reference
from infragraph.engine.module import ModuleNode, ResolvedModule, ResolvedResource
from infragraph.engine.projector import OutputProjection, OutputProjector
from infragraph.engine.variables import Variable, resolve_variables
from infragraph.errors import InfragraphError


class Stage(str, Enum):
    LOAD = "load"
    RESOLVE_VARIABLES = "resolve-variables"
    BUILD_GRAPH = "build-graph"
    TOPOLOGICAL_EVALUATE = "topological-evaluate"
    PROJECT_OUTPUTS = "project-outputs"
    DONE = "done"


@dataclass(frozen=True)
class Composition:
    """A loaded composition: top-level variables, module nodes and output projections."""

    name: str
    variables: Mapping[str, Variable] = field(default_factory=dict)
    modules: tuple[ModuleNode, ...] = ()
    outputs: tuple[OutputProjection, ...] = ()


@dataclass(frozen=True)
class CompositionResult:
    name: str
    variables: Mapping[str, Any]
    order: list[str]
    modules: dict[str, ResolvedModule]
    outputs: dict[str, Any]
    references: list[Reference]

    @property
    def resources(self) -> list[ResolvedResource]:
        """Every resolved resource, modules in evaluation order."""
        return [r for name in self.order for r in self.modules[name].resources]

    def to_document(self) -> dict[str, Any]:
        """Plain, stable rendering of the result (deferred attributes become ``${...}`` strings)."""
        return {
            "name": self.name,
            "variables": render(self.variables),
            "order": list(self.order),
            "references": [str(edge) for edge in self.references],
            "modules": {
                name: {
                    "source": self.modules[name].source,
                    "inputs": render(self.modules[name].inputs),
                    "resources": [
                        {"name": r.name, "type": r.type, "args": render(r.args)}
                        for r in self.modules[name].resources
                    ],
                    "outputs": render(self.modules[name].outputs),
                }
                for name in self.order
            },
            "outputs": render(self.outputs),
        }


def render(value: Any) -> Any:
    if isinstance(value, (Deferred, Interpolated)):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): render(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render(v) for v in value]
    return value


def run_pipeline(
    composition: Composition | Callable[[], Composition],
    overrides: Mapping[str, Any] | None = None,
) -> CompositionResult:
    """Run every stage in order; the failing stage is recorded on the raised error."""
    stage = Stage.LOAD
    try:
        if callable(composition):
            composition = composition()
        pulumi.log.info(f"resolving composition {composition.name!r}")

        stage = Stage.RESOLVE_VARIABLES
        variables = resolve_variables(composition.variables, overrides)

        stage = Stage.BUILD_GRAPH
        graph = CompositionGraph(composition.modules)
        projector = OutputProjector(composition.outputs)
        order = graph.topological_order()
        pulumi.log.debug(f"evaluation order: {', '.join(order)}")

        stage = Stage.TOPOLOGICAL_EVALUATE
        modules = graph.evaluate(variables)

        stage = Stage.PROJECT_OUTPUTS
        outputs = projector.project(modules)
    except InfragraphError as e:
        e.stage = stage.value
        raise

    pulumi.log.info(f"composition {composition.name!r} resolved: {len(order)} module(s), {len(outputs)} output(s)")
    return CompositionResult(
        name=composition.name,
        variables=variables,
        order=order,
        modules=modules,
        outputs=outputs,
        references=graph.references(),
    )
