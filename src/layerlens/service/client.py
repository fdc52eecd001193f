"""Async client for the analysis backend HTTP API."""

import asyncio
import json
import logging
from typing import Any, Callable, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from ..core.models import (
    AnalysisSource,
    AnalysisStatus,
    AnalyzeRequest,
    AnalyzeResponse,
    Config,
    HistoryEntry,
    HistoryMetadata,
)
from ..utils.formatting import get_error_message, join_url

logger = logging.getLogger(__name__)

BACKEND_UNAVAILABLE_MESSAGE = "Backend API is unavailable."
# Host used in request URLs when talking over a unix socket
SOCKET_BASE_URL = "http://localhost"

StatusCallback = Callable[[AnalysisStatus], None]


class BackendError(Exception):
    """The backend answered with an error, or could not be used."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class BackendUnavailableError(BackendError):
    """The backend could not be reached at all."""


class AnalysisClient:
    """Async backend API client with proper resource management."""

    def __init__(self, config: Config):
        self.config = config
        self.base_url = SOCKET_BASE_URL if config.backend_socket else config.backend_url
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry with session setup."""
        headers = {
            'Accept': 'application/json',
            'User-Agent': 'layerlens',
        }
        if self.config.backend_socket:
            connector = aiohttp.UnixConnector(path=self.config.backend_socket)
        else:
            connector = aiohttp.TCPConnector(limit=4)
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        self.session = aiohttp.ClientSession(headers=headers, connector=connector, timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit with guaranteed cleanup."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        if self.session is None or self.session.closed:
            raise BackendUnavailableError(BACKEND_UNAVAILABLE_MESSAGE)

        url = join_url(self.base_url, path)
        logger.debug(f"{method} {url}")
        try:
            async with self.session.request(method, url, json=payload) as response:
                body = self._decode(await response.text())
                if response.status >= 400:
                    message = get_error_message(body) if body else f"HTTP {response.status}"
                    raise BackendError(message, status=response.status)
                return body
        except aiohttp.ClientConnectionError as error:
            raise BackendUnavailableError(f"{BACKEND_UNAVAILABLE_MESSAGE} ({error})") from error
        except asyncio.TimeoutError as error:
            raise BackendUnavailableError(f"{BACKEND_UNAVAILABLE_MESSAGE} (request timed out)") from error

    @staticmethod
    def _decode(text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def check_dive(self) -> Any:
        """Probe whether the backend can run the analyzer."""
        return await self._request('GET', '/checkdive')

    async def analyze(self, request: AnalyzeRequest) -> AnalyzeResponse:
        data = await self._request('POST', '/analyze', request.to_dict())
        if not isinstance(data, dict) or 'jobId' not in data:
            raise BackendError(f"Unexpected analyze response: {data!r}")
        return AnalyzeResponse.from_dict(data)

    async def get_status(self, job_id: str) -> AnalysisStatus:
        data = await self._request('GET', f"/analysis/{quote(job_id, safe='')}/status")
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected status response: {data!r}")
        return AnalysisStatus.from_dict(data)

    async def get_result(self, job_id: str) -> dict:
        data = await self._request('GET', f"/analysis/{quote(job_id, safe='')}/result")
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected result response for job {job_id}")
        return data

    async def list_history(self) -> List[HistoryMetadata]:
        data = await self._request('GET', '/history')
        return [HistoryMetadata.from_dict(item) for item in data or [] if isinstance(item, dict)]

    async def get_history(self, history_id: str) -> HistoryEntry:
        data = await self._request('GET', f"/history/{quote(history_id, safe='')}")
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected history response for {history_id}")
        return HistoryEntry.from_dict(data)

    async def delete_history(self, history_id: str) -> None:
        await self._request('DELETE', f"/history/{quote(history_id, safe='')}")

    async def clear_history(self) -> None:
        await self._request('DELETE', '/history')

    async def wait_for_terminal_status(self, job_id: str, interval: float,
                                       on_status: Optional[StatusCallback] = None) -> AnalysisStatus:
        """
        Poll a job until it leaves the queued/running states.

        Args:
            job_id: Job returned by POST /analyze
            interval: Seconds to sleep between polls
            on_status: Called with every status received

        Returns:
            The first terminal status
        """
        while True:
            status = await self.get_status(job_id)
            if on_status:
                on_status(status)
            if not status.is_active:
                return status
            await asyncio.sleep(interval)


async def run_single_analysis(client: AnalysisClient, target: str,
                              source: AnalysisSource = 'docker',
                              image_id: Optional[str] = None,
                              poll_interval: float = 2.0,
                              on_status: Optional[StatusCallback] = None) -> Tuple[AnalysisStatus, dict]:
    """
    Submit one analysis, wait for it and fetch its result.

    Raises:
        BackendError: If the job fails or the backend rejects a request
    """
    response = await client.analyze(AnalyzeRequest.for_target(target, source, image_id))
    logger.info(f"Submitted analysis job {response.job_id} for {target}")
    status = await client.wait_for_terminal_status(response.job_id, poll_interval, on_status)
    if status.status != 'succeeded':
        raise BackendError((status.message or '').strip() or "Analysis failed.")
    return status, await client.get_result(response.job_id)
