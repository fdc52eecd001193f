import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from layerlens.cli import main, unwrap_result
from layerlens.core.models import AnalysisStatus, AnalyzeResponse, HistoryMetadata, HistorySummary
from layerlens.service.client import AnalysisClient, BackendUnavailableError


class FakeClient(AnalysisClient):
    """Offline stand-in for the backend client used by CLI commands."""

    failing_images = set()
    analyzed = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def analyze(self, request):
        FakeClient.analyzed.append(request.image or request.archive_path)
        return AnalyzeResponse(job_id=request.image or "archive", status="queued")

    async def get_status(self, job_id):
        if job_id in FakeClient.failing_images:
            return AnalysisStatus(job_id=job_id, status="failed", message="pull access denied")
        return AnalysisStatus(job_id=job_id, status="succeeded", elapsed_seconds=65)

    async def get_result(self, job_id):
        return {
            "image": {"sizeBytes": 2048, "inefficientBytes": 0},
            "layer": [{"index": 0, "fileList": [{"path": "bin/app", "sizeBytes": 2048, "nodeType": "file"}]}],
        }

    async def list_history(self):
        return [HistoryMetadata(id="h1", image="nginx:latest", image_id="sha256:abc",
                                summary=HistorySummary(size_bytes=1024, inefficient_bytes=0,
                                                       efficiency_score=1.0))]


@pytest.fixture
def fake_backend():
    FakeClient.failing_images = set()
    FakeClient.analyzed = []
    with patch('layerlens.cli.AnalysisClient', FakeClient):
        yield FakeClient


@pytest.fixture
def runner():
    return CliRunner()


class TestTreeCommand:
    def test_tree_from_file_list(self, runner, write_json, file_list_result):
        path = write_json("result.json", file_list_result)
        result = runner.invoke(main, ['--theme', 'green', 'tree', path, '--no-worker'])
        assert result.exit_code == 0, result.output
        assert "app" in result.output
        assert "main.js" in result.output
        assert "app/main.js" in result.output
        assert "EFFICIENCY" in result.output

    def test_tree_json_export(self, runner, write_json, file_list_result):
        path = write_json("result.json", file_list_result)
        result = runner.invoke(main, ['tree', path, '--no-worker', '--json'])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["wastedFileReferences"] == [{"file": "app/main.js", "count": 1, "sizeBytes": 42}]
        assert data["fileTreeData"]["aggregate"][0]["sizeBytes"] == 42

    def test_tree_accepts_history_entry(self, runner, write_json, file_list_result):
        path = write_json("entry.json", {"metadata": {"id": "h1"}, "result": file_list_result})
        result = runner.invoke(main, ['tree', path, '--no-worker', '--json'])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["fileTreeData"]["layers"][0]["layerId"] == "layer-0"

    def test_tree_unknown_layer(self, runner, write_json, file_list_result):
        path = write_json("result.json", file_list_result)
        result = runner.invoke(main, ['tree', path, '--no-worker', '--layer', '9'])
        assert result.exit_code != 0
        assert "No layer with index 9" in result.output

    def test_tree_rejects_non_object(self, runner, write_json):
        path = write_json("result.json", [1, 2])
        result = runner.invoke(main, ['tree', path, '--no-worker'])
        assert result.exit_code != 0
        assert "does not contain an analysis result" in result.output


class TestCompareCommand:
    def test_compare_files(self, runner, write_json, native_result):
        changed = json.loads(json.dumps(native_result))
        changed["image"]["sizeBytes"] = 400
        changed["layer"][1]["sizeBytes"] = 200
        left = write_json("left.json", native_result)
        right = write_json("right.json", changed)

        result = runner.invoke(main, ['compare', left, right])
        assert result.exit_code == 0, result.output
        assert "modified" in result.output
        assert "+100 Bytes" in result.output

    def test_identical_results(self, runner, write_json, native_result):
        path = write_json("same.json", native_result)
        result = runner.invoke(main, ['compare', path, path])
        assert result.exit_code == 0, result.output
        assert "Layers are identical" in result.output


class TestBackendCommands:
    def test_analyze(self, runner, fake_backend, tmp_path):
        output = tmp_path / "out.json"
        result = runner.invoke(main, ['analyze', 'nginx:latest', '--no-worker', '-o', str(output)])
        assert result.exit_code == 0, result.output
        assert "Analysis complete (1m 5s)" in result.output
        assert json.loads(output.read_text())["image"]["sizeBytes"] == 2048
        assert fake_backend.analyzed == ["nginx:latest"]

    def test_analyze_failure_exits_nonzero(self, runner, fake_backend):
        fake_backend.failing_images = {"private/image"}
        result = runner.invoke(main, ['analyze', 'private/image', '--no-worker'])
        assert result.exit_code == 1
        assert "pull access denied" in result.output

    def test_bulk_reports_failures(self, runner, fake_backend):
        fake_backend.failing_images = {"bad"}
        result = runner.invoke(main, ['bulk', 'good', 'bad', 'other'])
        assert result.exit_code == 1
        assert fake_backend.analyzed == ["good", "bad", "other"]
        assert "SUCCEEDED: 2" in result.output
        assert "pull access denied" in result.output

    def test_bulk_requires_targets(self, runner):
        result = runner.invoke(main, ['bulk'])
        assert result.exit_code == 2

    def test_history(self, runner, fake_backend):
        result = runner.invoke(main, ['history'])
        assert result.exit_code == 0, result.output
        assert "nginx:latest" in result.output

    def test_backend_unavailable(self, runner):
        async def unavailable(self):
            raise BackendUnavailableError("Backend API is unavailable.")

        with patch.object(AnalysisClient, 'list_history', unavailable):
            result = runner.invoke(main, ['--backend-url', 'http://127.0.0.1:9', 'history'])
        assert result.exit_code == 1
        assert "Backend API is unavailable." in result.output


class TestUnwrapResult:
    def test_history_entry_unwrapped(self):
        assert unwrap_result({"metadata": {}, "result": {"layer": []}}) == {"layer": []}

    def test_bare_result_kept(self):
        raw = {"layer": [], "result": "ok"}
        assert unwrap_result(raw) is raw
