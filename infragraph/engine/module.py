"""Module definitions, module nodes and their resolved form."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import pulumi

from infragraph.engine.expressions import (
    Expression,
    OutputRef,
    Scope,
    evaluate,
    output_refs,
    parse_expression,
    resource_refs,
    variable_refs,
)
from infragraph.engine.variables import UNSET, Variable, check_correspondence, resolve_value
from infragraph.errors import ConfigError, InvalidExpression, TypeMismatch, UnresolvedReference

# Name under which a counted resource sees its own instance number.
COUNT_INDEX = "count.index"


@dataclass(frozen=True)
class ResourceDeclaration:
    """One infrastructure object. ``type`` is a provider type token, e.g. ``aws:ec2/vpc:Vpc``.

    Argument payloads are never interpreted here; only nested expressions are evaluated.
    """

    name: str
    type: str
    args: Mapping[str, Expression] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    count: Expression | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ResourceDeclaration":
        if "name" not in raw or "type" not in raw:
            raise ConfigError(f"resource declaration needs 'name' and 'type': {dict(raw)!r}")
        args = raw.get("args") or {}
        return cls(
            name=raw["name"],
            type=raw["type"],
            args={key: parse_expression(value) for key, value in args.items()},
            depends_on=tuple(raw.get("dependsOn") or ()),
            count=parse_expression(raw["count"]) if raw.get("count") is not None else None,
        )


@dataclass(frozen=True)
class ResolvedResource:
    """A resource declaration with every argument evaluated, ready for the provisioning engine."""

    module: str
    name: str
    type: str
    args: Mapping[str, Any]
    depends_on: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        """``module.resource``; also the Pulumi logical name. Names never contain '.'."""
        return f"{self.module}.{self.name}"


@dataclass(frozen=True)
class ResolvedModule:
    name: str
    source: str
    inputs: Mapping[str, Any]
    resources: tuple[ResolvedResource, ...]
    outputs: Mapping[str, Any]


@dataclass(frozen=True)
class ModuleDefinition:
    """Reusable module: declared inputs, resource declarations and output expressions."""

    name: str
    inputs: Mapping[str, Variable] = field(default_factory=dict)
    resources: tuple[ResourceDeclaration, ...] = ()
    outputs: Mapping[str, Expression] = field(default_factory=dict)
    description: str = ""

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ModuleDefinition":
        """Build from a parsed ``kind: Module`` document (already schema-validated)."""
        spec = doc.get("spec") or {}
        metadata = doc.get("metadata") or {}
        definition = cls(
            name=metadata["name"],
            inputs={name: Variable.from_dict(name, raw) for name, raw in (spec.get("inputs") or {}).items()},
            resources=tuple(ResourceDeclaration.from_dict(r) for r in spec.get("resources") or []),
            outputs={name: parse_expression(raw) for name, raw in (spec.get("outputs") or {}).items()},
            description=metadata.get("description", ""),
        )
        definition.validate()
        return definition

    def validate(self) -> None:
        """Check that every expression only names this module's own inputs and resources."""
        resource_names: set[str] = set()
        for resource in self.resources:
            if resource.name in resource_names:
                raise ConfigError(f"module {self.name!r} declares resource {resource.name!r} twice")
            resource_names.add(resource.name)

        # Counted resources expand to ``name-<i>``; a plain resource may not take one of those names.
        counted_names = {r.name for r in self.resources if r.count is not None}
        for resource in self.resources:
            if resource.count is not None:
                continue
            base, _, suffix = resource.name.rpartition("-")
            if suffix.isdigit() and base in counted_names:
                raise ConfigError(
                    f"module {self.name!r} resource {resource.name!r} collides with an instance of "
                    f"counted resource {base!r}"
                )

        declared: list[tuple[str, Expression, bool]] = []
        for r in self.resources:
            counted = r.count is not None
            declared += [(f"resource {r.name!r} arg {k!r}", expr, counted) for k, expr in r.args.items()]
            if r.count is not None:
                declared.append((f"resource {r.name!r} count", r.count, False))
        declared += [(f"output {name!r}", expr, False) for name, expr in self.outputs.items()]

        for label, expr, counted in declared:
            if output_refs(expr):
                raise InvalidExpression(
                    f"module {self.name!r} {label}: module definitions cannot reference other modules; "
                    "take the value as an input"
                )
            for var in variable_refs(expr):
                if var == COUNT_INDEX and counted:
                    continue
                if var not in self.inputs:
                    raise UnresolvedReference(f"module {self.name!r} {label} uses undeclared input {var!r}")
            for attr in resource_refs(expr):
                if attr.resource not in resource_names:
                    raise UnresolvedReference(f"module {self.name!r} {label} uses unknown resource {attr.resource!r}")

        earlier: set[str] = set()
        for resource in self.resources:
            for dep in resource.depends_on:
                if dep not in resource_names:
                    raise UnresolvedReference(f"module {self.name!r} resource {resource.name!r} depends on unknown {dep!r}")
            used = {attr.resource for expr in resource.args.values() for attr in resource_refs(expr)}
            used.update(resource.depends_on)
            later = sorted(used - earlier)
            if later:
                raise InvalidExpression(
                    f"module {self.name!r} resource {resource.name!r} uses {', '.join(later)} before it is declared"
                )
            earlier.add(resource.name)

        for name, variable in self.inputs.items():
            if variable.corresponds_to is not None and variable.corresponds_to not in self.inputs:
                raise UnresolvedReference(
                    f"module {self.name!r} input {name!r} corresponds to undeclared {variable.corresponds_to!r}"
                )


@dataclass(frozen=True)
class ModuleNode:
    """A named instance of a module definition with its input bindings."""

    name: str
    definition: ModuleDefinition
    bindings: Mapping[str, Expression] = field(default_factory=dict)

    @property
    def output_names(self) -> list[str]:
        return list(self.definition.outputs)

    def references(self) -> list[tuple[str, OutputRef]]:
        """(input name, referenced output) pairs, in binding order."""
        return [(input_name, ref) for input_name, expr in self.bindings.items() for ref in output_refs(expr)]

    def validate(self) -> None:
        unknown = [name for name in self.bindings if name not in self.definition.inputs]
        if unknown:
            raise UnresolvedReference(
                f"module {self.name!r} binds undeclared input(s) {', '.join(unknown)} "
                f"(source {self.definition.name!r})"
            )

    def evaluate_bindings(self, scope: Scope) -> dict[str, Any]:
        """Evaluate this node's input bindings against composition variables and upstream outputs."""
        return {name: evaluate(expr, scope) for name, expr in self.bindings.items()}

    def _count(self, declaration: ResourceDeclaration, scope: Scope) -> int | None:
        if declaration.count is None:
            return None
        value = evaluate(declaration.count, scope)
        if isinstance(value, list):
            return len(value)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise TypeMismatch(
                f"module {self.name!r} resource {declaration.name!r}: count must be a list or a "
                f"non-negative integer, got {value!r}"
            )
        return value

    def resolve(self, bound_inputs: Mapping[str, Any]) -> ResolvedModule:
        """Resolve inputs, evaluate resource arguments and outputs. Effect-free."""
        self.validate()
        unknown = [name for name in bound_inputs if name not in self.definition.inputs]
        if unknown:
            raise UnresolvedReference(f"module {self.name!r} has no input(s) {', '.join(unknown)}")

        inputs = {
            name: resolve_value(variable, bound_inputs.get(name, UNSET), owner=self.name)
            for name, variable in self.definition.inputs.items()
        }
        check_correspondence(self.definition.inputs, inputs, owner=self.name)

        counts = {d.name: self._count(d, Scope(variables=inputs, module=self.name)) for d in self.definition.resources}
        scope = Scope(variables=inputs, module=self.name, resources=counts)

        def instance_names(resource_name: str) -> list[str]:
            count = counts[resource_name]
            return [resource_name] if count is None else [f"{resource_name}-{i}" for i in range(count)]

        resources: list[ResolvedResource] = []
        for declaration in self.definition.resources:
            depends_on = tuple(name for dep in declaration.depends_on for name in instance_names(dep))
            for index, instance in enumerate(instance_names(declaration.name)):
                instance_scope = scope
                if counts[declaration.name] is not None:
                    instance_scope = Scope(
                        variables={**inputs, COUNT_INDEX: index},
                        module=self.name,
                        resources=counts,
                    )
                resources.append(
                    ResolvedResource(
                        module=self.name,
                        name=instance,
                        type=declaration.type,
                        args={key: evaluate(expr, instance_scope) for key, expr in declaration.args.items()},
                        depends_on=depends_on,
                    )
                )

        outputs = {name: evaluate(expr, scope) for name, expr in self.definition.outputs.items()}
        pulumi.log.debug(f"module {self.name!r} resolved: {len(resources)} resource(s), {len(outputs)} output(s)")
        return ResolvedModule(
            name=self.name,
            source=self.definition.name,
            inputs=inputs,
            resources=tuple(resources),
            outputs=outputs,
        )
