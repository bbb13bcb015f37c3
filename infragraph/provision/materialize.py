"""Declare the resources of a resolved composition with Pulumi.

Resources are declared module by module in evaluation order, and in
declaration order inside a module, so every deferred attribute points at a
resource that already exists.
"""

from typing import Any

import pulumi

from infragraph.engine.expressions import Deferred, Interpolated
from infragraph.engine.module import ResolvedResource
from infragraph.engine.pipeline import CompositionResult
from infragraph.errors import UnresolvedReference
from infragraph.provision import providers  # noqa: F401 - register providers
from infragraph.provision.context import ProvisionContext
from infragraph.provision.registry import PROVIDERS


def split_type_token(token: str) -> tuple[str, str, str]:
    """``aws:ec2/vpc:Vpc`` -> (``aws``, ``ec2``, ``Vpc``)."""
    parts = token.split(":")
    if len(parts) != 3:
        raise UnresolvedReference(f"malformed resource type {token!r}, expected 'provider:module:Class'")
    prefix, module, name = parts
    return prefix, module.split("/")[0], name


def resource_class(token: str) -> Any:
    """Look up the Pulumi resource class for a type token."""
    prefix, module, name = split_type_token(token)
    if prefix not in PROVIDERS:
        known = ", ".join(sorted(PROVIDERS)) or "(none)"
        raise UnresolvedReference(f"no provider registered for {token!r}. Registered: {known}")
    package: Any = PROVIDERS[prefix].package
    if module != "index":
        package = getattr(package, module, None)
    cls = getattr(package, name, None) if package is not None else None
    if cls is None:
        raise UnresolvedReference(f"unknown resource type {token!r}")
    return cls


def to_input(value: Any, ctx: ProvisionContext) -> Any:
    """Replace deferred attributes with the Outputs of already-declared resources."""
    if isinstance(value, Deferred):
        return getattr(ctx.require(f"{value.module}.{value.resource}"), value.attribute)
    if isinstance(value, Interpolated):
        return pulumi.Output.concat(*[to_input(part, ctx) for part in value.parts])
    if isinstance(value, dict):
        return {key: to_input(item, ctx) for key, item in value.items()}
    if isinstance(value, list):
        return [to_input(item, ctx) for item in value]
    return value


def declare_resource(resource: ResolvedResource, ctx: ProvisionContext) -> Any:
    """Declare one resource with its provider and explicit dependencies."""
    cls = resource_class(resource.type)
    prefix = split_type_token(resource.type)[0]
    depends_on = [ctx.require(f"{resource.module}.{dep}") for dep in resource.depends_on]
    args = {key: to_input(value, ctx) for key, value in resource.args.items()}
    declared = cls(
        resource.key,
        **args,
        opts=pulumi.ResourceOptions(
            provider=ctx.provider(prefix),
            depends_on=depends_on or None,
        ),
    )
    ctx.set(resource.key, declared)
    pulumi.log.info(f"declared {resource.type} {resource.key}")
    return declared


def materialize(result: CompositionResult, ctx: ProvisionContext) -> None:
    """Declare every resource of ``result`` and register its projected outputs as exports."""
    for resource in result.resources:
        declare_resource(resource, ctx)
    for name, value in result.outputs.items():
        ctx.export(name, to_input(value, ctx))
