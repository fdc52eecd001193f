"""Human-readable formatting of sizes, ratios, ids and errors."""

import json
import math
from typing import Any, Mapping, Optional

from ..core.models import is_number

BYTE_UNITS = ["Bytes", "KB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB"]


def format_bytes(size_bytes: float, decimals: int = 2) -> str:
    """Format a byte count using 1024-based units, e.g. "1.5 KB"."""
    if not is_number(size_bytes) or size_bytes == 0:
        return "0 Bytes"
    decimals = max(0, decimals)
    # Integer scale so sizes beyond float range still format
    scale = 1
    i = 0
    while abs(size_bytes) >= scale * 1024 and i < len(BYTE_UNITS) - 1:
        scale *= 1024
        i += 1
    try:
        value = round(size_bytes / scale, decimals)
    except OverflowError:
        return f"{size_bytes // scale} {BYTE_UNITS[i]}"
    text = f"{value:.{decimals}f}".rstrip('0').rstrip('.') if decimals else f"{value:.0f}"
    return f"{text} {BYTE_UNITS[i]}"


def format_signed_bytes(delta: float) -> str:
    if not is_number(delta) or delta == 0:
        return "0 Bytes"
    sign = "+" if delta > 0 else "-"
    return f"{sign}{format_bytes(abs(delta))}"


def format_percent(value: float, decimals: int = 1) -> str:
    """Format a ratio (0.25) as a percentage ("25.0%")."""
    if not is_number(value):
        return "0%"
    try:
        return f"{float(value) * 100:.{decimals}f}%"
    except OverflowError:
        return "0%"


def format_signed_percent(value: float, decimals: int = 1) -> str:
    if not is_number(value) or value == 0:
        return format_percent(0, decimals)
    sign = "+" if value > 0 else ""
    return f"{sign}{format_percent(value, decimals)}"


def calculate_percent(part: float, total: float) -> float:
    if not is_number(part) or not is_number(total) or total <= 0:
        return 0.0
    try:
        return part / total
    except OverflowError:
        return 0.0


def extract_id(image_id: str) -> str:
    """Short image id: digest algorithm prefix removed, first 12 characters."""
    return image_id.replace("sha256:", "")[:12]


def format_elapsed(elapsed_seconds: Optional[float]) -> Optional[str]:
    """Format elapsed seconds as "1h 2m 3s", "2m 3s" or "3s"."""
    if elapsed_seconds is None or not is_number(elapsed_seconds):
        return None
    total_seconds = max(0, int(math.floor(elapsed_seconds)))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def join_url(base: str, path: str) -> str:
    trimmed_base = base.rstrip('/')
    trimmed_path = path if path.startswith('/') else f"/{path}"
    return f"{trimmed_base}{trimmed_path}"


def get_error_message(error: Any) -> str:
    """
    Best-effort message for an exception or an error payload.

    Strings pass through; exceptions give their message; mappings give
    their "message" (or "Message") value, else their JSON form.
    """
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        message = str(error)
        return message or error.__class__.__name__
    if isinstance(error, Mapping):
        for key in ('message', 'Message'):
            value = error.get(key)
            if isinstance(value, str):
                return value
        try:
            return json.dumps(error)
        except (TypeError, ValueError):
            return str(error)
    return str(error)
