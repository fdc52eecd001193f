"""Human-readable status lines for analysis jobs."""

import re
from dataclasses import dataclass
from typing import Optional

FRIENDLY_STATUS_LABELS = {
    'queued': "Queued for analysis",
    'running': "Analyzing image",
    'succeeded': "Analysis complete",
    'failed': "Analysis failed",
}

# Stage messages that only repeat the "running" label
REDUNDANT_RUNNING_MESSAGES = {"analyzing image", "analysis running"}


@dataclass
class JobStatusDisplay:
    status_line: str
    detail_message: Optional[str] = None
    is_active: bool = False
    is_failure: bool = False


def _title_case(value: str) -> str:
    return " ".join(token[:1].upper() + token[1:] for token in re.split(r"[\s_-]+", value) if token)


def format_job_status_display(job_status: str, job_message: Optional[str] = None,
                              elapsed_label: Optional[str] = None,
                              target: Optional[str] = None) -> JobStatusDisplay:
    """
    Build the status line shown while a job is tracked.

    A running job's stage message is shown inline; a failed job's message
    is kept apart as the detail message. Unknown statuses are title-cased.
    """
    raw_status = job_status.strip().lower()
    message = job_message.strip() if job_message else None
    is_failure = raw_status == 'failed'

    label = FRIENDLY_STATUS_LABELS.get(raw_status) or _title_case(raw_status or 'unknown')
    if raw_status == 'running' and message and message.lower() not in REDUNDANT_RUNNING_MESSAGES:
        label = f"{label} - {message}"

    status_line = f"Status: {label}"
    if elapsed_label:
        status_line += f" ({elapsed_label})"
    if target:
        status_line += f" - {target}"

    return JobStatusDisplay(
        status_line=status_line,
        detail_message=message if is_failure else None,
        is_active=raw_status in ('queued', 'running'),
        is_failure=is_failure,
    )
