"""Provider registry: maps a type-token prefix (``aws``, ``cloudflare``) to its SDK and provider factory."""

from collections.abc import Callable
from dataclasses import dataclass
from types import ModuleType
from typing import Protocol

import pulumi

from infragraph.provision.context import ProvisionContext


class ProviderFactory(Protocol):
    """Protocol for provider factory functions."""

    def __call__(self, ctx: ProvisionContext) -> pulumi.ProviderResource:
        ...


@dataclass
class ProviderDef:
    """Registered provider: the Pulumi SDK package and the factory that builds its provider."""

    package: ModuleType
    factory: Callable[[ProvisionContext], pulumi.ProviderResource]


PROVIDERS: dict[str, ProviderDef] = {}


def register(prefix: str, package: ModuleType) -> Callable[[ProviderFactory], ProviderFactory]:
    """Decorator to register a provider factory in PROVIDERS."""

    def decorator(fn: ProviderFactory) -> ProviderFactory:
        PROVIDERS[prefix] = ProviderDef(package=package, factory=fn)
        return fn

    return decorator
