"""Provisioning context: providers, declared Pulumi resources and stack exports."""

from dataclasses import dataclass, field
from typing import Any

import pulumi

from infragraph.errors import UnresolvedReference


@dataclass
class ProvisionContext:
    """State shared while handing a resolved composition to Pulumi.

    Resources are stored under ``<module>.<resource>`` so deferred attributes
    can be looked up once their resource has been declared.
    """

    composition_name: str
    region: str
    _providers: dict[str, pulumi.ProviderResource] = field(default_factory=dict)
    _resources: dict[str, Any] = field(default_factory=dict)
    _exports: dict[str, Any] = field(default_factory=dict)

    def set(self, key: str, value: Any) -> None:
        """Store a declared resource for later lookups."""
        self._resources[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a resource; return default if key is missing."""
        return self._resources.get(key, default)

    def require(self, key: str) -> Any:
        """Retrieve a resource; raise UnresolvedReference with available keys if missing."""
        if key not in self._resources:
            available = ", ".join(sorted(self._resources.keys())) or "(none)"
            raise UnresolvedReference(
                f"missing required resource: {key!r}. Available resources: {available}"
            )
        return self._resources[key]

    @property
    def resources(self) -> dict[str, Any]:
        return dict(self._resources)

    def provider(self, prefix: str) -> pulumi.ProviderResource:
        """Return the provider for a type-token prefix, creating it on first use."""
        from infragraph.provision.registry import PROVIDERS

        if prefix not in self._providers:
            if prefix not in PROVIDERS:
                known = ", ".join(sorted(PROVIDERS)) or "(none)"
                raise UnresolvedReference(f"no provider registered for {prefix!r}. Registered: {known}")
            self._providers[prefix] = PROVIDERS[prefix].factory(self)
        return self._providers[prefix]

    def export(self, key: str, value: Any) -> None:
        """Register a Pulumi stack export."""
        self._exports[key] = value

    @property
    def exports(self) -> dict[str, Any]:
        """Return all registered Pulumi exports."""
        return dict(self._exports)
