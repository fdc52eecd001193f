"""Tests for the worker protocol and the file tree orchestrator."""

import asyncio
from concurrent.futures import Executor, Future, ThreadPoolExecutor

import pytest

from layerlens.worker.orchestrator import (
    WORKER_FALLBACK_WARNING,
    FileTreeOrchestrator,
    FileTreeStatus,
)
from layerlens.worker.protocol import (
    ComputeError,
    ComputeSuccess,
    WorkerMessageError,
    build_compute_request,
    handle_worker_message,
    parse_worker_response,
)


class ManualExecutor(Executor):
    """Executor whose jobs only run when the test says so."""

    def __init__(self):
        self.jobs = []
        self.shut_down = False

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args))
        return future

    def shutdown(self, wait=True, *, cancel_futures=False):
        self.shut_down = True

    def run(self, index):
        future, fn, args = self.jobs[index]
        future.set_result(fn(*args))

    def answer(self, index, message):
        self.jobs[index][0].set_result(message)

    def crash(self, index, error):
        self.jobs[index][0].set_exception(error)


async def settle_callbacks():
    for _ in range(5):
        await asyncio.sleep(0)


def result_with_file(path, size):
    return {"layer": [{"index": 0, "fileList": [
        {"path": path, "sizeBytes": size, "nodeType": "file", "changeKind": "removed"},
    ]}]}


class TestProtocol:
    def test_compute_request_shape(self):
        message = build_compute_request(3, {"layer": []})
        assert message["type"] == "compute"
        assert message["requestId"] == 3
        assert message["rawResult"] == {"layer": []}

    def test_success_response(self, file_list_result):
        response = handle_worker_message(build_compute_request(1, file_list_result))
        assert response["type"] == "success"
        assert response["requestId"] == 1
        assert response["wastedFileReferences"] == [{"file": "app/main.js", "count": 1, "sizeBytes": 42}]
        assert response["fileTreeData"]["aggregate"][0]["path"] == "app"

    def test_error_response(self):
        response = handle_worker_message(build_compute_request(2, {}, aggregate_fallback="bogus"))
        assert response["type"] == "error"
        assert response["requestId"] == 2
        assert "bogus" in response["message"]

    @pytest.mark.parametrize("message", [None, "compute", {"type": "ping"}])
    def test_non_compute_messages_ignored(self, message):
        assert handle_worker_message(message) is None

    def test_parse_success(self, file_list_result):
        response = parse_worker_response(handle_worker_message(build_compute_request(5, file_list_result)))
        assert isinstance(response, ComputeSuccess)
        assert response.request_id == 5
        assert response.artifacts.wasted_bytes == 42
        assert response.artifacts.file_tree_data.aggregate[0].size_bytes == 42

    def test_parse_error(self):
        response = parse_worker_response({"type": "error", "requestId": 4, "message": "boom"})
        assert response == ComputeError(request_id=4, message="boom")

    @pytest.mark.parametrize("message", [
        None,
        "success",
        {"type": "success"},
        {"type": "success", "requestId": "1", "fileTreeData": {}},
        {"type": "weird", "requestId": 1},
        {"type": "success", "requestId": 1},
        {"type": "success", "requestId": 1, "fileTreeData": {"aggregate": [{"name": "x"}]}},
    ])
    def test_parse_malformed(self, message):
        with pytest.raises(WorkerMessageError):
            parse_worker_response(message)


class TestOrchestrator:
    def test_worker_result_applied(self, file_list_result):
        async def scenario():
            with FileTreeOrchestrator(executor_factory=lambda: ThreadPoolExecutor(max_workers=1)) as orchestrator:
                return await orchestrator.compute(file_list_result)

        state = asyncio.run(scenario())
        assert state.status == FileTreeStatus.READY
        assert state.warning is None
        assert state.request_id == 1
        assert state.artifacts.wasted_file_references[0].file == "app/main.js"

    def test_worker_construction_failure_falls_back(self, file_list_result):
        def broken_factory():
            raise OSError("no processes allowed")

        async def scenario():
            orchestrator = FileTreeOrchestrator(executor_factory=broken_factory)
            assert not orchestrator.has_worker
            return await orchestrator.compute(file_list_result)

        state = asyncio.run(scenario())
        assert state.status == FileTreeStatus.READY
        assert state.warning.startswith(WORKER_FALLBACK_WARNING)
        assert "no processes allowed" in state.warning
        assert state.artifacts.wasted_bytes == 42

    def test_disabled_worker_computes_without_warning(self, file_list_result):
        async def scenario():
            orchestrator = FileTreeOrchestrator(use_worker=False)
            return await orchestrator.compute(file_list_result)

        state = asyncio.run(scenario())
        assert state.status == FileTreeStatus.READY
        assert state.warning is None

    def test_stale_response_never_applied(self):
        executor = ManualExecutor()

        async def scenario():
            orchestrator = FileTreeOrchestrator(executor_factory=lambda: executor)
            first = orchestrator.submit(result_with_file("old.txt", 1))
            second = orchestrator.submit(result_with_file("new.txt", 2))
            assert (first, second) == (1, 2)

            executor.run(0)
            await settle_callbacks()
            assert orchestrator.state.status == FileTreeStatus.LOADING
            assert orchestrator.state.artifacts is None

            executor.run(1)
            return await orchestrator.wait()

        state = asyncio.run(scenario())
        assert state.request_id == 2
        assert [ref.file for ref in state.artifacts.wasted_file_references] == ["new.txt"]
        assert state.warning is None

    def test_late_stale_response_ignored_after_settle(self):
        executor = ManualExecutor()

        async def scenario():
            orchestrator = FileTreeOrchestrator(executor_factory=lambda: executor)
            orchestrator.submit(result_with_file("old.txt", 1))
            orchestrator.submit(result_with_file("new.txt", 2))
            executor.run(1)
            await orchestrator.wait()
            executor.run(0)
            await settle_callbacks()
            return orchestrator.state

        state = asyncio.run(scenario())
        assert [ref.file for ref in state.artifacts.wasted_file_references] == ["new.txt"]

    def test_unreadable_message_discards_worker(self, file_list_result):
        executor = ManualExecutor()

        async def scenario():
            orchestrator = FileTreeOrchestrator(executor_factory=lambda: executor)
            orchestrator.submit(file_list_result)
            executor.answer(0, "not a message")
            state = await orchestrator.wait()
            return orchestrator, state

        orchestrator, state = asyncio.run(scenario())
        assert state.status == FileTreeStatus.READY
        assert "worker message could not be read" in state.warning
        assert executor.shut_down
        assert not orchestrator.has_worker

    def test_error_response_falls_back(self, file_list_result):
        executor = ManualExecutor()

        async def scenario():
            orchestrator = FileTreeOrchestrator(executor_factory=lambda: executor)
            orchestrator.submit(file_list_result)
            executor.answer(0, {"type": "error", "requestId": 1, "message": "out of memory"})
            return await orchestrator.wait()

        state = asyncio.run(scenario())
        assert state.status == FileTreeStatus.READY
        assert "out of memory" in state.warning
        assert state.artifacts.wasted_bytes == 42

    def test_worker_exception_falls_back(self, file_list_result):
        executor = ManualExecutor()

        async def scenario():
            orchestrator = FileTreeOrchestrator(executor_factory=lambda: executor)
            orchestrator.submit(file_list_result)
            executor.crash(0, RuntimeError("worker died"))
            return await orchestrator.wait()

        state = asyncio.run(scenario())
        assert state.status == FileTreeStatus.READY
        assert "worker died" in state.warning

    def test_fallback_failure_sets_error(self):
        async def scenario():
            orchestrator = FileTreeOrchestrator(use_worker=False, aggregate_fallback="bogus")
            return await orchestrator.compute({})

        state = asyncio.run(scenario())
        assert state.status == FileTreeStatus.ERROR
        assert "bogus" in state.error
        assert state.artifacts is None
