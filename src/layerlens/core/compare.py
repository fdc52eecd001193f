"""Layer matching and summary deltas between two analysis results."""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .models import (
    CompareLayerDelta,
    CompareMetricDelta,
    CompareSummaryDelta,
    HistorySummary,
    ImageLayer,
    is_number,
)
from .normalizer import get_raw_layers

LayerLike = Union[ImageLayer, Mapping[str, Any]]


def as_image_layer(layer: LayerLike) -> ImageLayer:
    if isinstance(layer, ImageLayer):
        return layer
    return ImageLayer.from_dict(layer)


def layer_match_key(layer: ImageLayer) -> str:
    """
    Stable identity of a layer across analysis runs.

    Digest first, then layer id, then the ordinal index.
    """
    if layer.digest_id and layer.digest_id.strip():
        return layer.digest_id
    if layer.id and layer.id.strip():
        return layer.id
    return str(layer.index) if layer.index is not None else "unknown"


def _size(layer: Optional[ImageLayer]) -> float:
    if layer is None or not is_number(layer.size_bytes):
        return 0
    return layer.size_bytes


def compare_layers(baseline: Optional[Iterable[LayerLike]] = None,
                   target: Optional[Iterable[LayerLike]] = None) -> List[CompareLayerDelta]:
    """
    Pair layers of two results and classify each pairing.

    Args:
        baseline: Layers of the older (left) result
        target: Layers of the newer (right) result

    Returns:
        One delta per identity key; target order first, then keys that
        only exist in the baseline
    """
    left_by_key: Dict[str, ImageLayer] = {}
    right_by_key: Dict[str, ImageLayer] = {}
    ordered_keys: List[str] = []

    for layer in target or []:
        layer = as_image_layer(layer)
        key = layer_match_key(layer)
        if key not in right_by_key:
            ordered_keys.append(key)
        right_by_key[key] = layer

    for layer in baseline or []:
        layer = as_image_layer(layer)
        key = layer_match_key(layer)
        if key not in right_by_key and key not in left_by_key:
            ordered_keys.append(key)
        left_by_key[key] = layer

    deltas = []
    for key in ordered_keys:
        left = left_by_key.get(key)
        right = right_by_key.get(key)
        if left is not None and right is None:
            status = 'removed'
        elif left is None and right is not None:
            status = 'added'
        elif left.size_bytes != right.size_bytes or left.command != right.command:
            status = 'modified'
        else:
            status = 'unchanged'
        deltas.append(CompareLayerDelta(
            key=key,
            status=status,
            size_bytes_delta=_size(right) - _size(left),
            left=left,
            right=right,
        ))
    return deltas


def build_compare_summary_delta(left: Optional[HistorySummary],
                                right: Optional[HistorySummary]) -> CompareSummaryDelta:
    """Image level size, waste and efficiency deltas between two summaries."""
    left = left or HistorySummary()
    right = right or HistorySummary()
    return CompareSummaryDelta(
        size_bytes=CompareMetricDelta.between(left.size_bytes, right.size_bytes),
        inefficient_bytes=CompareMetricDelta.between(left.inefficient_bytes, right.inefficient_bytes),
        efficiency_score=CompareMetricDelta.between(left.efficiency_score, right.efficiency_score),
    )


def summary_from_result(raw_result: Any) -> HistorySummary:
    """Summary numbers from the ``image`` block of a raw analysis result."""
    image = raw_result.get('image') if isinstance(raw_result, Mapping) else None
    return HistorySummary.from_dict(image if isinstance(image, Mapping) else None)


def layers_from_result(raw_result: Any) -> List[ImageLayer]:
    """Typed layers of a raw analysis result."""
    return [ImageLayer.from_dict(record) for record in get_raw_layers(raw_result)]
