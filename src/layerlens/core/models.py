"""
Core data models for layerlens.

This module contains the fundamental data structures used throughout
the application: configuration, file tree nodes, layer trees, comparison
deltas, backend payloads and bulk analysis bookkeeping.
"""

import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def is_number(value: Any) -> bool:
    """Check for a finite int/float that is not a bool."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    # Python ints are exact; large ones cannot be converted to float
    if isinstance(value, int):
        return True
    return math.isfinite(value)


def _finite_or_zero(value: Any) -> float:
    return value if is_number(value) else 0


@dataclass
class Config:
    """Configuration settings for layerlens."""

    backend_url: str = field(
        default_factory=lambda: os.getenv('LAYERLENS_BACKEND_URL', 'http://localhost:8080')
    )
    backend_socket: Optional[str] = field(
        default_factory=lambda: os.getenv('LAYERLENS_BACKEND_SOCKET') or None
    )

    request_timeout: float = 30.0
    poll_interval: float = 2.0  # Single analysis status polling (seconds)
    bulk_poll_interval: float = 1.0  # Bulk analysis status polling (seconds)

    use_worker: bool = True  # Build trees in a worker process
    aggregate_fallback: Literal['first-layer', 'merge-layers'] = 'first-layer'

    bulk_default_days: int = 3
    debug: bool = False


class NodeType(str, Enum):
    """Kind of filesystem entry."""
    FILE = "file"
    DIRECTORY = "directory"
    LINK = "link"
    UNKNOWN = "unknown"


class ChangeKind(str, Enum):
    """How a layer changed an entry."""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    UNCHANGED = "unchanged"
    UNKNOWN = "unknown"


@dataclass
class FileTreeNode:
    """Represents a file, directory or link in an image filesystem."""

    name: str
    path: str
    size_bytes: Optional[float] = None
    node_type: NodeType = NodeType.UNKNOWN
    change_kind: ChangeKind = ChangeKind.UNKNOWN
    children: List['FileTreeNode'] = field(default_factory=list)

    def is_directory(self) -> bool:
        """Check if this node represents a directory."""
        return self.node_type == NodeType.DIRECTORY

    def is_terminal(self) -> bool:
        """A non-directory entry cannot have filesystem descendants."""
        return self.node_type != NodeType.DIRECTORY

    @property
    def effective_size(self) -> Optional[float]:
        """Size with directory totals derived from children on every read."""
        if self.is_directory() and self.children:
            return sum(child.effective_size or 0 for child in self.children)
        return self.size_bytes

    def iter_nodes(self):
        """Depth-first iteration over this node and its descendants."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'path': self.path,
            'nodeType': self.node_type.value,
            'changeKind': self.change_kind.value,
        }
        if self.size_bytes is not None:
            data['sizeBytes'] = self.size_bytes
        if self.children:
            data['children'] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileTreeNode':
        """Rebuild a node from its canonical wire form (see to_dict)."""
        return cls(
            name=data['name'],
            path=data['path'],
            size_bytes=data.get('sizeBytes'),
            node_type=NodeType(data.get('nodeType', 'unknown')),
            change_kind=ChangeKind(data.get('changeKind', 'unknown')),
            children=[cls.from_dict(child) for child in data.get('children') or []],
        )


@dataclass
class LayerTree:
    """Filesystem tree contributed by one image layer."""

    layer_index: int
    tree: List[FileTreeNode] = field(default_factory=list)
    layer_id: Optional[str] = None
    command: Optional[str] = None
    size_bytes: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'layerId': self.layer_id,
            'layerIndex': self.layer_index,
            'command': self.command,
            'sizeBytes': self.size_bytes,
            'tree': [node.to_dict() for node in self.tree],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LayerTree':
        return cls(
            layer_index=data['layerIndex'],
            tree=[FileTreeNode.from_dict(node) for node in data.get('tree') or []],
            layer_id=data.get('layerId'),
            command=data.get('command'),
            size_bytes=data.get('sizeBytes'),
        )


@dataclass
class NormalizedFileTree:
    """Aggregate (final filesystem) tree plus one tree per layer."""

    aggregate: List[FileTreeNode] = field(default_factory=list)
    layers: List[LayerTree] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'aggregate': [node.to_dict() for node in self.aggregate],
            'layers': [layer.to_dict() for layer in self.layers],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NormalizedFileTree':
        return cls(
            aggregate=[FileTreeNode.from_dict(node) for node in data.get('aggregate') or []],
            layers=[LayerTree.from_dict(layer) for layer in data.get('layers') or []],
        )


@dataclass
class WastedFileReference:
    """Bytes attributed to one path that was later modified or removed."""

    file: str
    count: int
    size_bytes: float

    def to_dict(self) -> Dict[str, Any]:
        return {'file': self.file, 'count': self.count, 'sizeBytes': self.size_bytes}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WastedFileReference':
        return cls(file=data['file'], count=data['count'], size_bytes=data['sizeBytes'])


@dataclass
class FileTreeArtifacts:
    """Everything derived from one analysis result by the tree pipeline."""

    file_tree_data: NormalizedFileTree
    wasted_file_references: List[WastedFileReference] = field(default_factory=list)

    @property
    def wasted_bytes(self) -> float:
        return sum(reference.size_bytes for reference in self.wasted_file_references)


@dataclass
class ImageLayer:
    """Identity and size of a layer as reported by the analyzer."""

    index: Optional[int] = None
    id: str = ""
    digest_id: str = ""
    size_bytes: Optional[float] = None
    command: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImageLayer':
        """Build from a raw layer record, ignoring fields of the wrong type."""
        index = data.get('index')
        size = data.get('sizeBytes')
        command = data.get('command')
        return cls(
            index=index if isinstance(index, int) and not isinstance(index, bool) else None,
            id=str(data.get('id') or ''),
            digest_id=str(data.get('digestId') or ''),
            size_bytes=size if is_number(size) else None,
            command=command if isinstance(command, str) else None,
        )


CompareLayerStatus = Literal['added', 'removed', 'modified', 'unchanged']


@dataclass
class CompareLayerDelta:
    """One matched layer pairing between a baseline and a target result."""

    key: str
    status: CompareLayerStatus
    size_bytes_delta: float
    left: Optional[ImageLayer] = None
    right: Optional[ImageLayer] = None


@dataclass
class CompareMetricDelta:
    left: float
    right: float
    delta: float

    @classmethod
    def between(cls, left: Any, right: Any) -> 'CompareMetricDelta':
        safe_left = _finite_or_zero(left)
        safe_right = _finite_or_zero(right)
        return cls(left=safe_left, right=safe_right, delta=safe_right - safe_left)


@dataclass
class CompareSummaryDelta:
    size_bytes: CompareMetricDelta
    inefficient_bytes: CompareMetricDelta
    efficiency_score: CompareMetricDelta


@dataclass
class HistorySummary:
    size_bytes: float = 0
    inefficient_bytes: float = 0
    efficiency_score: float = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'HistorySummary':
        data = data or {}
        return cls(
            size_bytes=_finite_or_zero(data.get('sizeBytes')),
            inefficient_bytes=_finite_or_zero(data.get('inefficientBytes')),
            efficiency_score=_finite_or_zero(data.get('efficiencyScore')),
        )


@dataclass
class HistoryMetadata:
    """Metadata of one stored analysis, as listed by GET /history."""

    id: str
    image: str
    source: str = "docker"
    image_id: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    summary: HistorySummary = field(default_factory=HistorySummary)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryMetadata':
        return cls(
            id=str(data.get('id', '')),
            image=str(data.get('image', '')),
            source=data.get('source') or 'docker',
            image_id=data.get('imageId'),
            created_at=data.get('createdAt'),
            completed_at=data.get('completedAt'),
            summary=HistorySummary.from_dict(data.get('summary')),
        )


@dataclass
class HistoryEntry:
    metadata: HistoryMetadata
    result: Dict[str, Any]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEntry':
        return cls(
            metadata=HistoryMetadata.from_dict(data.get('metadata') or {}),
            result=data.get('result') or {},
        )


AnalysisSource = Literal['docker', 'docker-archive']
JobStatus = Literal['queued', 'running', 'succeeded', 'failed']

ACTIVE_JOB_STATUSES = frozenset({'queued', 'running'})


@dataclass
class AnalyzeRequest:
    """Body of POST /analyze."""

    source: AnalysisSource = 'docker'
    image: Optional[str] = None
    image_id: Optional[str] = None
    archive_path: Optional[str] = None

    @classmethod
    def for_target(cls, target: str, source: AnalysisSource = 'docker',
                   image_id: Optional[str] = None) -> 'AnalyzeRequest':
        if source == 'docker-archive':
            return cls(source=source, archive_path=target)
        return cls(source=source, image=target, image_id=image_id)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'source': self.source}
        if self.image is not None:
            body['image'] = self.image
        if self.image_id is not None:
            body['imageId'] = self.image_id
        if self.archive_path is not None:
            body['archivePath'] = self.archive_path
        return body


@dataclass
class AnalyzeResponse:
    job_id: str
    status: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalyzeResponse':
        return cls(job_id=str(data['jobId']), status=str(data.get('status', 'queued')))


@dataclass
class AnalysisStatus:
    """Body of GET /analysis/{jobId}/status."""

    job_id: str
    status: str
    message: Optional[str] = None
    elapsed_seconds: float = 0

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisStatus':
        return cls(
            job_id=str(data.get('jobId', '')),
            status=str(data.get('status', '')),
            message=data.get('message'),
            elapsed_seconds=_finite_or_zero(data.get('elapsedSeconds')),
        )


@dataclass
class ImageInfo:
    """A locally available image, candidate for bulk analysis."""

    name: str
    id: str = ""
    full_id: Optional[str] = None
    created_at: Optional[float] = None  # epoch milliseconds
    size_bytes: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImageInfo':
        created_at = data.get('createdAt')
        size = data.get('sizeBytes')
        return cls(
            name=str(data.get('name') or ''),
            id=str(data.get('id') or ''),
            full_id=data.get('fullId') or None,
            created_at=created_at if is_number(created_at) else None,
            size_bytes=size if is_number(size) else None,
        )


@dataclass
class BulkAnalyzeTarget:
    image: str
    image_id: Optional[str] = None


@dataclass
class BulkAnalyzeRequest:
    """Targets selected for a bulk run plus the selection counters."""

    targets: List[BulkAnalyzeTarget] = field(default_factory=list)
    days: Optional[int] = None
    force_reanalyze: bool = False
    visible_count: int = 0
    skipped_older_count: int = 0
    skipped_unknown_created_at_count: int = 0
    skipped_already_analyzed_count: int = 0

    @property
    def eligible_count(self) -> int:
        return len(self.targets)


@dataclass
class BulkAnalyzeProgress:
    """Live progress of a bulk run, updated in place by the scheduler."""

    total: int
    completed: int = 0
    current_target: Optional[str] = None
    cancel_requested: bool = False
    started_at: float = 0.0


@dataclass(frozen=True)
class BulkAnalyzeFailure:
    image: str
    message: str


@dataclass(frozen=True)
class BulkAnalyzeReport:
    """Final accounting of a bulk run."""

    succeeded: Tuple[str, ...]
    failed: Tuple[BulkAnalyzeFailure, ...]
    cancelled: bool
    cancelled_remaining_count: int
    started_at: float
    completed_at: float
    request: Optional[BulkAnalyzeRequest] = None

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + self.cancelled_remaining_count

    def has_failures(self) -> bool:
        return len(self.failed) > 0
