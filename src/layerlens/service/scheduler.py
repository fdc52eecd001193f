"""
Sequential bulk analysis of many images.

Jobs run strictly one at a time: job N+1 is submitted only after job N
reached a terminal state. A failure is recorded for its target and the run
continues. Cancellation is cooperative and checked before each target, so
a job already in flight always runs to completion.
"""

import logging
import re
import time
from typing import Callable, Iterable, List, Optional, Sequence, Set

from ..core.models import (
    AnalyzeRequest,
    BulkAnalyzeFailure,
    BulkAnalyzeProgress,
    BulkAnalyzeReport,
    BulkAnalyzeRequest,
    BulkAnalyzeTarget,
    ImageInfo,
    is_number,
)
from ..utils.formatting import get_error_message
from .client import BACKEND_UNAVAILABLE_MESSAGE, AnalysisClient

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
MAX_DAYS = 2 ** 53 - 1

ProgressCallback = Callable[[BulkAnalyzeProgress], None]


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its caller."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def validate_days(raw_value: str) -> int:
    """
    Parse the "newer than N days" input of a bulk run.

    Raises:
        ValueError: If the value is empty, not a whole number or too large
    """
    trimmed = raw_value.strip()
    if not trimmed:
        raise ValueError("Days is required.")
    if not re.fullmatch(r"\d+", trimmed):
        raise ValueError("Days must be a whole number.")
    days = int(trimmed)
    if days > MAX_DAYS:
        raise ValueError("Days must be a safe integer value.")
    return days


def build_bulk_request(images: Iterable[ImageInfo], analyzed_image_ids: Set[str],
                       days: int, force_reanalyze: bool = False,
                       now_ms: Optional[float] = None) -> BulkAnalyzeRequest:
    """
    Select the images a bulk run should analyze.

    Images without a known creation time, images created before the cutoff
    and (unless forced) images that already have an analysis are skipped
    and counted.
    """
    if now_ms is None:
        now_ms = time.time() * 1000
    cutoff_ms = now_ms - days * DAY_MS
    request = BulkAnalyzeRequest(days=days, force_reanalyze=force_reanalyze)

    for image in images:
        request.visible_count += 1
        if not is_number(image.created_at):
            request.skipped_unknown_created_at_count += 1
            continue
        if image.created_at < cutoff_ms:
            request.skipped_older_count += 1
            continue
        if not force_reanalyze and image.full_id and image.full_id in analyzed_image_ids:
            request.skipped_already_analyzed_count += 1
            continue
        request.targets.append(BulkAnalyzeTarget(image=image.name, image_id=image.full_id))

    return request


class BulkAnalyzeScheduler:
    """Drive a list of analysis targets to completion, one job at a time."""

    def __init__(self, client: Optional[AnalysisClient], poll_interval: float = 1.0):
        self.client = client
        self.poll_interval = poll_interval

    async def run(self, targets: Sequence[BulkAnalyzeTarget],
                  token: Optional[CancellationToken] = None,
                  progress: Optional[BulkAnalyzeProgress] = None,
                  on_progress: Optional[ProgressCallback] = None,
                  request: Optional[BulkAnalyzeRequest] = None) -> BulkAnalyzeReport:
        """
        Analyze every target in order.

        Args:
            targets: Images to analyze, in submission order
            token: Checked before each target starts
            progress: Updated in place; created when not given
            on_progress: Called after every progress update
            request: Selection details copied into the report

        Returns:
            Immutable report of successes, failures and cancellation
        """
        token = token or CancellationToken()
        started_at = time.time()
        succeeded: List[str] = []
        failed: List[BulkAnalyzeFailure] = []
        cancelled = False
        cancelled_remaining_count = 0

        if self.client is None:
            failed = [BulkAnalyzeFailure(target.image, BACKEND_UNAVAILABLE_MESSAGE) for target in targets]
            return BulkAnalyzeReport(
                succeeded=(), failed=tuple(failed), cancelled=False,
                cancelled_remaining_count=0, started_at=started_at,
                completed_at=time.time(), request=request,
            )

        if progress is None:
            progress = BulkAnalyzeProgress(total=len(targets))
        progress.total = len(targets)
        progress.completed = 0
        progress.started_at = started_at

        def publish(completed: int, current: Optional[str]) -> None:
            progress.completed = completed
            progress.current_target = current
            progress.cancel_requested = token.cancelled
            if on_progress:
                on_progress(progress)

        publish(0, None)
        for index, target in enumerate(targets):
            if token.cancelled:
                cancelled = True
                cancelled_remaining_count = len(targets) - index
                logger.info(f"Bulk analysis cancelled with {cancelled_remaining_count} target(s) remaining")
                break

            publish(index, target.image)
            message = await self._analyze_target(target)
            if message is None:
                succeeded.append(target.image)
            else:
                logger.warning(f"Bulk analysis of {target.image} failed: {message}")
                failed.append(BulkAnalyzeFailure(image=target.image, message=message))
            publish(index + 1, None)

        return BulkAnalyzeReport(
            succeeded=tuple(succeeded),
            failed=tuple(failed),
            cancelled=cancelled,
            cancelled_remaining_count=cancelled_remaining_count,
            started_at=started_at,
            completed_at=time.time(),
            request=request,
        )

    async def _analyze_target(self, target: BulkAnalyzeTarget) -> Optional[str]:
        """Run one job to a terminal state; returns a failure message or None."""
        try:
            response = await self.client.analyze(
                AnalyzeRequest(source='docker', image=target.image, image_id=target.image_id)
            )
            status = await self.client.wait_for_terminal_status(response.job_id, self.poll_interval)
        except Exception as error:
            return get_error_message(error)
        if status.status == 'succeeded':
            return None
        return (status.message or '').strip() or "Analysis failed."
