"""Backend access and analysis job scheduling."""

from .client import AnalysisClient, BackendError, BackendUnavailableError
from .scheduler import BulkAnalyzeScheduler, CancellationToken

__all__ = [
    "AnalysisClient",
    "BackendError",
    "BackendUnavailableError",
    "BulkAnalyzeScheduler",
    "CancellationToken",
]
