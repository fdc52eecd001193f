"""Wasted space extraction over finalized file trees."""

import math
from typing import Dict, Iterable, List

from .models import ChangeKind, FileTreeNode, WastedFileReference, is_number

WASTED_CHANGE_KINDS = frozenset({ChangeKind.REMOVED, ChangeKind.MODIFIED})


def extract_wasted(nodes: Iterable[FileTreeNode]) -> List[WastedFileReference]:
    """
    Collect removed and modified leaves into per-path summaries.

    Directories are never counted themselves but are always descended.
    Repeated observations of the same path are merged: the count is
    incremented and the sizes are summed.

    Args:
        nodes: Root nodes of a finalized tree, typically the aggregate

    Returns:
        WastedFileReference list sorted by size, largest first
    """
    totals: Dict[str, WastedFileReference] = {}

    def visit(node: FileTreeNode) -> None:
        for child in node.children:
            visit(child)
        if node.is_directory():
            return
        if node.change_kind not in WASTED_CHANGE_KINDS:
            return
        if not node.path or not is_number(node.size_bytes):
            return
        existing = totals.get(node.path)
        if existing:
            existing.count += 1
            existing.size_bytes += node.size_bytes
        else:
            totals[node.path] = WastedFileReference(
                file=node.path, count=1, size_bytes=node.size_bytes
            )

    for node in nodes:
        visit(node)

    return sorted(totals.values(), key=lambda reference: reference.size_bytes, reverse=True)


def calculate_final_image_efficiency(inefficient_bytes: float, size_bytes: float) -> float:
    """
    Share of the image that is not wasted, clamped to [0, 1].

    Invalid inputs and non-positive image sizes score 1.
    """
    if not is_number(inefficient_bytes) or not is_number(size_bytes) or size_bytes <= 0:
        return 1.0
    try:
        score = 1 - inefficient_bytes / size_bytes
    except OverflowError:
        # Ratio beyond float range: all or none of the image is wasted
        return 0.0 if inefficient_bytes > 0 else 1.0
    if math.isnan(score):
        return 1.0
    return min(1.0, max(0.0, score))
