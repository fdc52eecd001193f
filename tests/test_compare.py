import pytest

from layerlens.core.compare import (
    build_compare_summary_delta,
    compare_layers,
    layer_match_key,
    layers_from_result,
    summary_from_result,
)
from layerlens.core.models import HistorySummary, ImageLayer


def layer(key, size=10, command="RUN step", index=0):
    return {"index": index, "digestId": key, "sizeBytes": size, "command": command}


class TestLayerMatchKey:
    def test_digest_first(self):
        assert layer_match_key(ImageLayer(index=0, id="id", digest_id="sha256:d")) == "sha256:d"

    def test_id_when_no_digest(self):
        assert layer_match_key(ImageLayer(index=0, id="id", digest_id="  ")) == "id"

    def test_index_last(self):
        assert layer_match_key(ImageLayer(index=3)) == "3"

    def test_unknown(self):
        assert layer_match_key(ImageLayer()) == "unknown"


class TestCompareLayers:
    def test_removed_added_unchanged(self):
        deltas = compare_layers([layer("L0"), layer("L1")], [layer("L1"), layer("L2")])
        assert [(d.key, d.status) for d in deltas] == [
            ("L1", "unchanged"),
            ("L2", "added"),
            ("L0", "removed"),
        ]

    def test_modified_when_size_differs(self):
        deltas = compare_layers([layer("L1", size=10)], [layer("L1", size=25)])
        assert deltas[0].status == "modified"
        assert deltas[0].size_bytes_delta == 15

    def test_modified_when_command_differs(self):
        deltas = compare_layers([layer("L1", command="RUN a")], [layer("L1", command="RUN b")])
        assert deltas[0].status == "modified"
        assert deltas[0].size_bytes_delta == 0

    def test_deltas_treat_missing_size_as_zero(self):
        deltas = compare_layers([layer("L0", size=None)], [layer("L2", size=8)])
        by_key = {d.key: d for d in deltas}
        assert by_key["L2"].size_bytes_delta == 8
        assert by_key["L0"].size_bytes_delta == 0

    def test_removed_delta_is_negative(self):
        deltas = compare_layers([layer("L0", size=30)], [])
        assert deltas[0].status == "removed"
        assert deltas[0].size_bytes_delta == -30
        assert deltas[0].right is None

    def test_sizes_beyond_float_range(self):
        deltas = compare_layers([layer("a", size=10 ** 400)], [layer("a", size=10 ** 400 + 1)])
        assert deltas[0].status == "modified"
        assert deltas[0].size_bytes_delta == 1

    def test_duplicate_keys_reported_once(self):
        deltas = compare_layers([], [layer("L1"), layer("L1", size=5)])
        assert [d.key for d in deltas] == ["L1"]

    def test_accepts_image_layers(self):
        deltas = compare_layers([ImageLayer(index=0)], [ImageLayer(index=0)])
        assert [(d.key, d.status) for d in deltas] == [("0", "unchanged")]

    def test_empty_inputs(self):
        assert compare_layers(None, None) == []


class TestSummaryDelta:
    def test_summary_delta(self):
        delta = build_compare_summary_delta(
            HistorySummary(size_bytes=100, inefficient_bytes=10, efficiency_score=0.9),
            HistorySummary(size_bytes=150, inefficient_bytes=5, efficiency_score=0.95),
        )
        assert delta.size_bytes.delta == 50
        assert delta.inefficient_bytes.delta == -5
        assert delta.efficiency_score.delta == pytest.approx(0.05)

    def test_missing_summary(self):
        delta = build_compare_summary_delta(None, HistorySummary(size_bytes=10))
        assert delta.size_bytes.left == 0
        assert delta.size_bytes.delta == 10

    def test_from_raw_results(self, native_result):
        summary = summary_from_result(native_result)
        assert summary.size_bytes == 300
        assert summary.efficiency_score == 0.9
        assert [l.digest_id for l in layers_from_result(native_result)] == ["sha256:base", "sha256:top"]

    def test_from_result_without_image(self):
        assert summary_from_result({}) == HistorySummary()
