"""Composition engine: variables, module nodes, the reference graph and output projection."""

from infragraph.engine.graph import CompositionGraph, Reference
from infragraph.engine.module import ModuleDefinition, ModuleNode, ResolvedModule, ResolvedResource
from infragraph.engine.pipeline import Composition, CompositionResult, Stage, run_pipeline
from infragraph.engine.projector import OutputProjection, OutputProjector

__all__ = [
    "Composition",
    "CompositionGraph",
    "CompositionResult",
    "ModuleDefinition",
    "ModuleNode",
    "OutputProjection",
    "OutputProjector",
    "Reference",
    "ResolvedModule",
    "ResolvedResource",
    "Stage",
    "run_pipeline",
]
