"""Core components for layerlens."""

from .models import (
    Config,
    FileTreeNode,
    LayerTree,
    NormalizedFileTree,
    WastedFileReference,
    FileTreeArtifacts,
    NodeType,
    ChangeKind,
)

__all__ = [
    "Config",
    "FileTreeNode",
    "LayerTree",
    "NormalizedFileTree",
    "WastedFileReference",
    "FileTreeArtifacts",
    "NodeType",
    "ChangeKind",
]
