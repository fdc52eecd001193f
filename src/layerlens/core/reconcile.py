"""
Reconciliation of native and flat-list file trees into one NormalizedFileTree.

The analyzer may report a nested tree, a flat per-layer ``fileList``, both,
or neither. Native data is preferred; the flat list fills whatever the native
data leaves empty, artifact by artifact.
"""

import logging
from typing import Any, List, Mapping

from .models import FileTreeArtifacts, FileTreeNode, LayerTree, NormalizedFileTree
from .normalizer import get_raw_layers, layer_tree_from_record, normalize_native_trees, normalize_nodes
from .wasted import extract_wasted
from ..utils.tree_builder import FileTreeBuilder, collect_entries_by_path, prune_terminal_paths

logger = logging.getLogger(__name__)

FIRST_LAYER = 'first-layer'
MERGE_LAYERS = 'merge-layers'
AGGREGATE_FALLBACKS = (FIRST_LAYER, MERGE_LAYERS)


def has_file_list(raw_result: Any) -> bool:
    """Check whether any layer carries a flat ``fileList``."""
    return any(isinstance(layer.get('fileList'), list) for layer in get_raw_layers(raw_result))


def file_list_entries(layer: Mapping[str, Any]) -> List[FileTreeNode]:
    return normalize_nodes(layer.get('fileList'))


def build_aggregate_from_entries(layers: List[List[FileTreeNode]]) -> List[FileTreeNode]:
    """Final filesystem view: last layer wins per path, shadowed paths pruned."""
    entries_by_path = collect_entries_by_path(layers)
    if not entries_by_path:
        return []
    return FileTreeBuilder.from_entries(prune_terminal_paths(entries_by_path))


def build_trees_from_file_list(raw_result: Any) -> NormalizedFileTree:
    """
    Build per-layer trees and an aggregate tree using only fileList data.

    Args:
        raw_result: Raw analysis result

    Returns:
        NormalizedFileTree reconstructed from the flat lists
    """
    records = get_raw_layers(raw_result)
    entries_per_layer = [file_list_entries(record) for record in records]
    layers = [
        layer_tree_from_record(record, position, FileTreeBuilder.from_entries(entries))
        for position, (record, entries) in enumerate(zip(records, entries_per_layer))
    ]
    return NormalizedFileTree(
        aggregate=build_aggregate_from_entries(entries_per_layer),
        layers=layers,
    )


def merge_layer_trees(layers: List[LayerTree]) -> List[FileTreeNode]:
    """Aggregate computed by replaying every layer tree in order."""
    return build_aggregate_from_entries([FileTreeBuilder.flatten(layer.tree) for layer in layers])


def build_file_trees(raw_result: Any, aggregate_fallback: str = FIRST_LAYER) -> NormalizedFileTree:
    """
    Combine native trees with fileList-derived trees.

    The aggregate and every layer each choose independently: a non-empty
    native tree is used as is, otherwise the flat-list reconstruction. When
    the aggregate is still empty it is derived from the layer trees, either
    by taking the first non-empty one or by replaying all of them.

    Args:
        raw_result: Raw analysis result of any supported shape
        aggregate_fallback: 'first-layer' or 'merge-layers'

    Returns:
        NormalizedFileTree; empty trees where no data exists
    """
    if aggregate_fallback not in AGGREGATE_FALLBACKS:
        raise ValueError(f"Unknown aggregate fallback: {aggregate_fallback}")

    native = normalize_native_trees(raw_result)
    aggregate = native.aggregate
    layers = native.layers

    if has_file_list(raw_result):
        from_list = build_trees_from_file_list(raw_result)
        if not aggregate:
            aggregate = from_list.aggregate
        layers = [
            layer if layer.tree or not fallback.tree else LayerTree(
                layer_index=layer.layer_index,
                tree=fallback.tree,
                layer_id=layer.layer_id,
                command=layer.command,
                size_bytes=layer.size_bytes,
            )
            for layer, fallback in zip(layers, from_list.layers)
        ]

    if not aggregate:
        if aggregate_fallback == MERGE_LAYERS:
            aggregate = merge_layer_trees(layers)
        else:
            aggregate = next((layer.tree for layer in layers if layer.tree), [])
        if aggregate:
            logger.debug(f"Aggregate tree derived from layer trees ({aggregate_fallback})")

    return NormalizedFileTree(aggregate=aggregate, layers=layers)


def normalize(raw_result: Any, aggregate_fallback: str = FIRST_LAYER) -> NormalizedFileTree:
    """Engine entry point: raw analysis result to NormalizedFileTree."""
    return build_file_trees(raw_result, aggregate_fallback)


def compute_file_tree_artifacts(raw_result: Any, aggregate_fallback: str = FIRST_LAYER) -> FileTreeArtifacts:
    """Run the full pipeline: reconciled trees plus wasted file references."""
    file_tree_data = build_file_trees(raw_result, aggregate_fallback)
    return FileTreeArtifacts(
        file_tree_data=file_tree_data,
        wasted_file_references=extract_wasted(file_tree_data.aggregate),
    )
