"""
Message protocol between the orchestrator and the tree-building worker.

Messages are plain dicts so they can cross a process boundary unchanged:

    {"type": "compute", "requestId": 3, "rawResult": {...}}
    {"type": "success", "requestId": 3, "fileTreeData": {...}, "wastedFileReferences": [...]}
    {"type": "error", "requestId": 3, "message": "..."}
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from ..core.models import FileTreeArtifacts, NormalizedFileTree, WastedFileReference
from ..core.reconcile import FIRST_LAYER, compute_file_tree_artifacts
from ..utils.formatting import get_error_message

COMPUTE = "compute"
SUCCESS = "success"
ERROR = "error"


class WorkerMessageError(ValueError):
    """A worker response that cannot be read."""


@dataclass
class ComputeSuccess:
    request_id: int
    artifacts: FileTreeArtifacts


@dataclass
class ComputeError:
    request_id: int
    message: str


WorkerResponse = Union[ComputeSuccess, ComputeError]


def build_compute_request(request_id: int, raw_result: Any,
                          aggregate_fallback: str = FIRST_LAYER) -> Dict[str, Any]:
    return {
        "type": COMPUTE,
        "requestId": request_id,
        "rawResult": raw_result,
        "aggregateFallback": aggregate_fallback,
    }


def handle_worker_message(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Worker entry point: answer one compute request.

    Runs inside the worker process. Anything other than a compute request
    is ignored.
    """
    if not isinstance(message, dict) or message.get("type") != COMPUTE:
        return None
    request_id = message.get("requestId")
    try:
        artifacts = compute_file_tree_artifacts(
            message.get("rawResult"),
            message.get("aggregateFallback") or FIRST_LAYER,
        )
    except Exception as error:
        return {"type": ERROR, "requestId": request_id, "message": get_error_message(error)}
    return {
        "type": SUCCESS,
        "requestId": request_id,
        "fileTreeData": artifacts.file_tree_data.to_dict(),
        "wastedFileReferences": [
            reference.to_dict() for reference in artifacts.wasted_file_references
        ],
    }


def parse_worker_response(message: Any) -> WorkerResponse:
    """
    Decode a worker response.

    Raises:
        WorkerMessageError: If the message is not a well-formed response
    """
    if not isinstance(message, dict):
        raise WorkerMessageError(f"Unexpected worker message: {type(message).__name__}")
    request_id = message.get("requestId")
    if isinstance(request_id, bool) or not isinstance(request_id, int):
        raise WorkerMessageError("Worker message has no request id")

    message_type = message.get("type")
    if message_type == ERROR:
        return ComputeError(request_id=request_id, message=str(message.get("message") or "Unknown error"))
    if message_type != SUCCESS:
        raise WorkerMessageError(f"Unknown worker message type: {message_type!r}")

    try:
        artifacts = FileTreeArtifacts(
            file_tree_data=NormalizedFileTree.from_dict(message["fileTreeData"]),
            wasted_file_references=[
                WastedFileReference.from_dict(reference)
                for reference in message.get("wastedFileReferences") or []
            ],
        )
    except (KeyError, TypeError, ValueError, AttributeError) as error:
        raise WorkerMessageError(f"Malformed worker payload: {error}") from error
    return ComputeSuccess(request_id=request_id, artifacts=artifacts)
