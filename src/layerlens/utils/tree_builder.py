"""FileTreeNode tree building utilities."""

from typing import Dict, Iterable, List, Optional

from ..core.models import ChangeKind, FileTreeNode, NodeType
from .path_utils import PathUtils


class _TrieNode:
    """Mutable node used while the trie is being assembled."""

    __slots__ = ('name', 'path', 'node_type', 'size_bytes', 'change_kind', 'children')

    def __init__(self, name: str, path: str, node_type: NodeType):
        self.name = name
        self.path = path
        self.node_type = node_type
        self.size_bytes: Optional[float] = None
        self.change_kind = ChangeKind.UNKNOWN
        self.children: Dict[str, '_TrieNode'] = {}

    def ensure_child(self, name: str, path: str, node_type: NodeType) -> '_TrieNode':
        child = self.children.get(name)
        if child is None:
            child = _TrieNode(name, path, node_type)
            self.children[name] = child
        return child


class FileTreeBuilder:
    """Utilities for building FileTreeNode trees from flat inputs."""

    @staticmethod
    def from_entries(entries: Iterable[FileTreeNode]) -> List[FileTreeNode]:
        """
        Build a hierarchical tree from a flat list of path-keyed nodes.

        Intermediate path segments become directory nodes. Only the final
        segment of an entry takes the entry's type, size and change kind; a
        later entry for the same path overwrites size and change kind.
        Directory sizes are summed bottom-up once every path is inserted.

        Args:
            entries: Flat nodes; each is keyed by its path (or name)

        Returns:
            Root-level nodes, sorted by name
        """
        root = _TrieNode('', '', NodeType.DIRECTORY)

        for entry in entries:
            parts = PathUtils.split(entry.path or entry.name)
            if not parts:
                continue
            current = root
            for i, part in enumerate(parts):
                is_leaf = i == len(parts) - 1
                node_type = entry.node_type if is_leaf else NodeType.DIRECTORY
                current = current.ensure_child(
                    part, PathUtils.join_path_components(parts[:i + 1]), node_type
                )
            current.size_bytes = entry.size_bytes
            current.change_kind = entry.change_kind

        return FileTreeBuilder._finalize_children(root)

    @staticmethod
    def _finalize_children(node: _TrieNode) -> List[FileTreeNode]:
        return sorted(
            (FileTreeBuilder._finalize(child) for child in node.children.values()),
            key=lambda child: child.name,
        )

    @staticmethod
    def _finalize(node: _TrieNode) -> FileTreeNode:
        children = FileTreeBuilder._finalize_children(node)
        size = node.size_bytes
        if children and node.node_type == NodeType.DIRECTORY:
            size = sum(child.size_bytes or 0 for child in children)
        return FileTreeNode(
            name=node.name,
            path=node.path,
            size_bytes=size,
            node_type=node.node_type,
            change_kind=node.change_kind,
            children=children,
        )

    @staticmethod
    def flatten(nodes: Iterable[FileTreeNode]) -> List[FileTreeNode]:
        """
        Flatten trees into childless copies of every node, parents first.

        Args:
            nodes: Root nodes to traverse

        Returns:
            One node per tree entry, without children
        """
        flat = []
        for root in nodes:
            for node in root.iter_nodes():
                flat.append(FileTreeNode(
                    name=node.name,
                    path=node.path,
                    size_bytes=None if node.is_directory() and node.children else node.size_bytes,
                    node_type=node.node_type,
                    change_kind=node.change_kind,
                ))
        return flat


def collect_entries_by_path(layers: Iterable[Iterable[FileTreeNode]]) -> Dict[str, FileTreeNode]:
    """
    Merge per-layer entries with last-layer-wins semantics per path.

    Args:
        layers: Entry lists in layer order

    Returns:
        Mapping of normalized path to the entry from the latest layer
    """
    entries_by_path: Dict[str, FileTreeNode] = {}
    for entries in layers:
        for entry in entries:
            raw_key = entry.path or entry.name
            key = PathUtils.strip_trailing_slashes(raw_key) if raw_key else None
            if not key:
                continue
            # Re-insert so iteration order follows the latest write
            entries_by_path.pop(key, None)
            entries_by_path[key] = entry
    return entries_by_path


def prune_terminal_paths(entries_by_path: Dict[str, FileTreeNode]) -> List[FileTreeNode]:
    """
    Remove entries that live below a non-directory entry.

    Overwriting "/opt" with a file (or link) hides everything previously
    under "/opt/...", exactly as on a real filesystem.

    Paths are ordered component-wise so every descendant follows its
    ancestor directly; a single scan then tracks the active terminal prefix.

    Args:
        entries_by_path: Final state per path after last-write-wins merging

    Returns:
        Surviving entries in path order
    """
    pruned = []
    active_terminal_prefix: Optional[str] = None

    for path in sorted(entries_by_path, key=PathUtils.sort_key):
        if active_terminal_prefix is not None:
            if PathUtils.is_descendant(path, active_terminal_prefix):
                continue
            active_terminal_prefix = None
        entry = entries_by_path[path]
        pruned.append(entry)
        if entry.is_terminal():
            active_terminal_prefix = path

    return pruned
