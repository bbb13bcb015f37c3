"""Provisioning handoff: turn a resolved composition into Pulumi resources and stack exports."""

from infragraph.provision.materialize import materialize

__all__ = ["materialize"]
