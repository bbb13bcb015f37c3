"""Composition graph: module reference edges, topological order and evaluation."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import heapq
from typing import Any

import pulumi

from infragraph.engine.expressions import Scope
from infragraph.engine.module import ModuleNode, ResolvedModule
from infragraph.errors import ConfigError, CycleDetected, UnresolvedReference


@dataclass(frozen=True)
class Reference:
    """Directed edge ``source_module.output -> target_module.input``."""

    source_module: str
    output: str
    target_module: str
    input: str

    def __str__(self) -> str:
        return f"{self.source_module}.{self.output} -> {self.target_module}.{self.input}"


class CompositionGraph:
    """Module nodes of one composition and the references between them.

    Modules with no mutual dependency are evaluated in lexicographic order of
    their names, so the same input set always yields the same order.
    """

    def __init__(self, modules: Iterable[ModuleNode]) -> None:
        self._modules: dict[str, ModuleNode] = {}
        for node in modules:
            if node.name in self._modules:
                raise ConfigError(f"module {node.name!r} declared more than once")
            self._modules[node.name] = node

    @property
    def modules(self) -> dict[str, ModuleNode]:
        return dict(self._modules)

    def references(self) -> list[Reference]:
        """All reference edges, grouped by target module name."""
        return [
            Reference(ref.module, ref.output, target, input_name)
            for target in sorted(self._modules)
            for input_name, ref in self._modules[target].references()
        ]

    def validate(self) -> None:
        """Raise UnresolvedReference for edges naming a missing module or output."""
        for name in sorted(self._modules):
            self._modules[name].validate()
        for edge in self.references():
            source = self._modules.get(edge.source_module)
            if source is None:
                raise UnresolvedReference(
                    f"module {edge.target_module!r} input {edge.input!r} references unknown module "
                    f"{edge.source_module!r}"
                )
            if edge.output not in source.output_names:
                available = ", ".join(source.output_names) or "(none)"
                raise UnresolvedReference(
                    f"module {edge.target_module!r} input {edge.input!r} references unknown output "
                    f"{edge.source_module}.{edge.output}. Available outputs: {available}"
                )

    def dependencies(self) -> dict[str, set[str]]:
        """Module name -> names of the modules whose outputs it consumes."""
        deps: dict[str, set[str]] = {name: set() for name in self._modules}
        for edge in self.references():
            deps[edge.target_module].add(edge.source_module)
        return deps

    def topological_order(self) -> list[str]:
        """Kahn's algorithm with a min-heap for the tie-break; raises CycleDetected."""
        self.validate()
        deps = self.dependencies()
        dependents: dict[str, set[str]] = {name: set() for name in self._modules}
        for target, sources in deps.items():
            for source in sources:
                dependents[source].add(target)

        indegree = {name: len(sources) for name, sources in deps.items()}
        ready = [name for name, count in indegree.items() if count == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            name = heapq.heappop(ready)
            order.append(name)
            for child in dependents[name]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, child)

        if len(order) != len(self._modules):
            remaining = set(self._modules) - set(order)
            raise CycleDetected(self._find_cycle(remaining, deps))
        return order

    @staticmethod
    def _find_cycle(remaining: set[str], deps: Mapping[str, set[str]]) -> list[str]:
        """Walk dependencies inside the unsorted remainder until a module repeats.

        Every remaining module still has a remaining dependency, so the walk
        always closes a cycle. The path is returned in data-flow order,
        starting at its lowest name and repeated at the end, e.g. ``[a, b, a]``.
        """
        path: list[str] = []
        seen: dict[str, int] = {}
        current = min(remaining)
        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            current = min(d for d in deps[current] if d in remaining)
        cycle = path[seen[current]:]
        cycle.reverse()
        start = cycle.index(min(cycle))
        cycle = cycle[start:] + cycle[:start]
        return cycle + [cycle[0]]

    def evaluate(self, variables: Mapping[str, Any]) -> dict[str, ResolvedModule]:
        """Resolve every module in dependency order, feeding outputs to dependents."""
        resolved: dict[str, ResolvedModule] = {}
        outputs: dict[str, Mapping[str, Any]] = {}
        for name in self.topological_order():
            node = self._modules[name]
            scope = Scope(variables=variables, outputs=outputs)
            module = node.resolve(node.evaluate_bindings(scope))
            resolved[name] = module
            outputs[name] = module.outputs
            pulumi.log.debug(f"evaluated module {name!r} ({node.definition.name})")
        return resolved
