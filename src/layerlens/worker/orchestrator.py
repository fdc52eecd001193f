"""
Background computation of file tree artifacts.

Tree building for large images is slow, so it runs in a worker process.
Every submission gets a new request id and only the response matching the
latest id is applied; superseded responses are dropped. Whenever the worker
cannot deliver (it failed to start, broke, answered with an error or with
an unreadable message) the request is recomputed in-process and a warning
is attached to the result instead of failing it.
"""

import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Optional

from ..core.models import FileTreeArtifacts
from ..core.reconcile import FIRST_LAYER, compute_file_tree_artifacts
from ..utils.formatting import get_error_message
from .protocol import (
    ComputeError,
    WorkerMessageError,
    build_compute_request,
    handle_worker_message,
    parse_worker_response,
)

logger = logging.getLogger(__name__)

WORKER_FALLBACK_WARNING = (
    "File tree analysis worker was unavailable, so processing ran in the main process. "
    "Large images may take longer."
)


class FileTreeStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class FileTreeState:
    """What presentation code reads: the latest settled (or loading) result."""

    status: FileTreeStatus = FileTreeStatus.IDLE
    request_id: int = 0
    artifacts: Optional[FileTreeArtifacts] = None
    warning: Optional[str] = None
    error: Optional[str] = None


def default_executor_factory() -> Executor:
    return ProcessPoolExecutor(max_workers=1)


class FileTreeOrchestrator:
    """Dispatch tree building to a worker and keep only the latest answer."""

    def __init__(self, executor_factory: Callable[[], Executor] = default_executor_factory,
                 aggregate_fallback: str = FIRST_LAYER, use_worker: bool = True):
        self.aggregate_fallback = aggregate_fallback
        self.state = FileTreeState()
        self._request_id = 0
        self._pending: Dict[int, Any] = {}
        self._settled: Optional[asyncio.Event] = None
        self._executor: Optional[Executor] = None
        self._worker_failure: Optional[str] = None
        self._use_worker = use_worker

        if use_worker:
            try:
                self._executor = executor_factory()
            except Exception as error:
                self._worker_failure = get_error_message(error)
                logger.warning(f"Could not start file tree worker: {self._worker_failure}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def request_id(self) -> int:
        return self._request_id

    @property
    def has_worker(self) -> bool:
        return self._executor is not None

    def close(self) -> None:
        """Stop the worker; pending requests are abandoned."""
        self._discard_worker()
        self._pending.clear()

    def submit(self, raw_result: Any) -> int:
        """
        Start computing artifacts for a new analysis result.

        Must be called from a running event loop. Any earlier request that
        has not settled yet is superseded.

        Returns:
            The request id assigned to this submission
        """
        loop = asyncio.get_running_loop()
        self._request_id += 1
        request_id = self._request_id
        self._pending = {request_id: raw_result}
        self.state = FileTreeState(status=FileTreeStatus.LOADING, request_id=request_id)
        self._settled_event().clear()

        if self._executor is None:
            if self._use_worker:
                self._fallback(request_id, self._worker_failure or "worker unavailable")
            else:
                loop.call_soon(self._compute_in_process, request_id, raw_result, None)
            return request_id

        message = build_compute_request(request_id, raw_result, self.aggregate_fallback)
        try:
            future = loop.run_in_executor(self._executor, handle_worker_message, message)
        except Exception as error:
            self._discard_worker()
            self._fallback(request_id, get_error_message(error))
            return request_id
        future.add_done_callback(partial(self._on_worker_done, request_id))
        logger.debug(f"Dispatched file tree request {request_id} to worker")
        return request_id

    async def wait(self) -> FileTreeState:
        """Wait until the latest request has settled."""
        await self._settled_event().wait()
        return self.state

    async def compute(self, raw_result: Any) -> FileTreeState:
        """Submit a result and wait for its (or a newer request's) outcome."""
        self.submit(raw_result)
        return await self.wait()

    def _settled_event(self) -> asyncio.Event:
        if self._settled is None:
            self._settled = asyncio.Event()
        return self._settled

    def _discard_worker(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def _on_worker_done(self, request_id: int, future: "asyncio.Future") -> None:
        if future.cancelled():
            # Worker was shut down before reaching this request
            self._fallback(request_id, self._worker_failure or "worker stopped")
            return
        error = future.exception()
        if error is not None:
            if isinstance(error, BrokenProcessPool):
                self._discard_worker()
                self._worker_failure = "worker stopped unexpectedly"
            logger.warning(f"File tree worker failed for request {request_id}: {error}")
            self._fallback(request_id, get_error_message(error))
            return

        try:
            response = parse_worker_response(future.result())
        except WorkerMessageError as error:
            logger.warning(f"Discarding file tree worker: {error}")
            self._discard_worker()
            self._worker_failure = "worker message could not be read"
            self._fallback(request_id, self._worker_failure)
            return

        if isinstance(response, ComputeError):
            self._fallback(response.request_id, response.message)
            return
        self._apply(response.request_id, response.artifacts)

    def _fallback(self, request_id: int, reason: Optional[str] = None) -> None:
        """Recompute a request in-process, unless it has been superseded."""
        raw_result = self._pending.get(request_id)
        if request_id != self._request_id or raw_result is None:
            return
        warning = f"{WORKER_FALLBACK_WARNING} ({reason})" if reason else WORKER_FALLBACK_WARNING
        asyncio.get_running_loop().call_soon(
            self._compute_in_process, request_id, raw_result, warning
        )

    def _compute_in_process(self, request_id: int, raw_result: Any, warning: Optional[str]) -> None:
        if request_id != self._request_id:
            return
        try:
            artifacts = compute_file_tree_artifacts(raw_result, self.aggregate_fallback)
        except Exception as error:
            logger.exception(f"File tree computation failed for request {request_id}")
            self._fail(request_id, get_error_message(error))
            return
        self._apply(request_id, artifacts, warning)

    def _apply(self, request_id: int, artifacts: FileTreeArtifacts, warning: Optional[str] = None) -> bool:
        if request_id != self._request_id:
            logger.debug(f"Ignoring stale file tree response {request_id} (current {self._request_id})")
            return False
        self._pending.pop(request_id, None)
        self.state = FileTreeState(
            status=FileTreeStatus.READY,
            request_id=request_id,
            artifacts=artifacts,
            warning=warning,
        )
        if warning:
            logger.warning(warning)
        self._settled_event().set()
        return True

    def _fail(self, request_id: int, message: str) -> None:
        if request_id != self._request_id:
            return
        self._pending.pop(request_id, None)
        self.state = FileTreeState(status=FileTreeStatus.ERROR, request_id=request_id, error=message)
        self._settled_event().set()
