"""
Normalization of raw analyzer output into canonical file tree nodes.

Analyzer versions disagree on key names, nesting and value types, so every
field is read through an ordered list of aliases. All functions here are
total: any input shape yields a (possibly empty) result and never raises.
"""

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .models import ChangeKind, FileTreeNode, LayerTree, NodeType, NormalizedFileTree
from ..utils.path_utils import PathUtils


NAME_KEYS = ['name', 'file', 'filename', 'label']
PATH_KEYS = ['path', 'fullPath', 'absolutePath', 'filePath']
SIZE_KEYS = ['sizeBytes', 'size', 'bytes', 'totalSize', 'fileSize']
CHANGE_KEYS = ['change', 'changeKind', 'changeType', 'status', 'diffType', 'diff']
TYPE_KEYS = ['nodeType', 'fileType', 'type', 'kind']
LINK_TARGET_KEYS = ['linkName', 'symlinkTarget', 'linkTarget']
IS_DIR_KEYS = ['isDir', 'isDirectory', 'dir']
IS_FILE_KEYS = ['isFile', 'file']
IS_LINK_KEYS = ['isLink', 'symlink']
CHILDREN_KEYS = [
    'children', 'entries', 'files', 'fileList', 'nodes',
    'tree', 'fileTree', 'filetree', 'contents',
]

# Where the native aggregate tree may live, at top level and under "image"
AGGREGATE_TREE_KEYS = ['fileTree', 'filetree', 'tree', 'fileSystem', 'files', 'root']
LAYER_TREE_KEYS = [
    'fileTree', 'filetree', 'tree', 'diffTree', 'changes', 'fileSystem', 'files', 'root',
]

CHANGE_SYNONYMS = {
    ChangeKind.ADDED: {'add', 'added', 'new', 'create', 'created', 'a'},
    ChangeKind.MODIFIED: {'modify', 'modified', 'change', 'changed', 'update', 'updated', 'm'},
    ChangeKind.REMOVED: {'remove', 'removed', 'delete', 'deleted', 'del', 'd'},
    ChangeKind.UNCHANGED: {'same', 'unchanged', 'nochange', 'none', 'u'},
}

NODE_TYPE_SYNONYMS = {
    NodeType.DIRECTORY: {'dir', 'directory', 'folder'},
    NodeType.FILE: {'file', 'regular'},
    NodeType.LINK: {'link', 'symlink'},
}

_MISSING = object()


def read_first_value(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    """
    Return the value of the first alias present in record.

    Each alias is tried as written, then lower-cased, then upper-cased.
    A key that is present wins even when its value is None.
    """
    for key in keys:
        for candidate in (key, key.lower(), key.upper()):
            value = record.get(candidate, _MISSING)
            if value is not _MISSING:
                return value
    return None


def to_number(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings; booleans and non-finite values are rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return int(parsed) if parsed.is_integer() else parsed
    return None


def to_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float)):
        return str(value)
    return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ('true', 'yes', '1'):
            return True
        if normalized in ('false', 'no', '0'):
            return False
    return None


def normalize_change_kind(value: Any) -> ChangeKind:
    """Map a change label such as "new", "Deleted" or "m" onto ChangeKind."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        for kind, synonyms in CHANGE_SYNONYMS.items():
            if normalized in synonyms:
                return kind
    return ChangeKind.UNKNOWN


def normalize_node_type(value: Any, is_dir: Optional[bool] = None,
                        is_file: Optional[bool] = None,
                        is_link: Optional[bool] = None) -> NodeType:
    """Classify a node, trusting explicit flags over the kind label."""
    if is_dir:
        return NodeType.DIRECTORY
    if is_file:
        return NodeType.FILE
    if is_link:
        return NodeType.LINK
    if isinstance(value, str):
        normalized = value.strip().lower()
        for node_type, synonyms in NODE_TYPE_SYNONYMS.items():
            if normalized in synonyms:
                return node_type
    return NodeType.UNKNOWN


def normalize_node(raw: Any) -> Optional[FileTreeNode]:
    """
    Convert one raw record into a FileTreeNode.

    Args:
        raw: A path string or a mapping using any of the known key aliases

    Returns:
        The canonical node, or None when neither a name nor a path can be found
    """
    if isinstance(raw, str):
        if not raw:
            return None
        return FileTreeNode(name=PathUtils.name_from_path(raw), path=raw)
    if not isinstance(raw, Mapping):
        return None

    name = to_string(read_first_value(raw, NAME_KEYS)) or ''
    path = to_string(read_first_value(raw, PATH_KEYS)) or ''
    if not name and not path:
        return None
    node_path = path or name
    node_name = name or PathUtils.name_from_path(node_path)

    link_target = to_string(read_first_value(raw, LINK_TARGET_KEYS))
    is_link = to_bool(read_first_value(raw, IS_LINK_KEYS))
    if is_link is None:
        is_link = bool(link_target)

    node_type = normalize_node_type(
        read_first_value(raw, TYPE_KEYS),
        is_dir=to_bool(read_first_value(raw, IS_DIR_KEYS)),
        is_file=to_bool(read_first_value(raw, IS_FILE_KEYS)),
        is_link=is_link,
    )

    children = normalize_nodes(read_first_value(raw, CHILDREN_KEYS))
    size_bytes = to_number(read_first_value(raw, SIZE_KEYS))
    if node_type == NodeType.DIRECTORY and children:
        # Directory size is the sum of its (already summed) children
        size_bytes = sum(child.size_bytes or 0 for child in children)

    return FileTreeNode(
        name=node_name,
        path=node_path,
        size_bytes=size_bytes,
        node_type=node_type,
        change_kind=normalize_change_kind(read_first_value(raw, CHANGE_KEYS)),
        children=children,
    )


def normalize_nodes(raw: Any) -> List[FileTreeNode]:
    """Normalize a list of raw records, or a single record, dropping unusable ones."""
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        nodes = (normalize_node(entry) for entry in raw)
        return [node for node in nodes if node is not None]
    node = normalize_node(raw)
    return [node] if node is not None else []


def first_truthy(record: Any, keys: Sequence[str]) -> Any:
    """Value of the first key in record holding a truthy value."""
    if not isinstance(record, Mapping):
        return None
    for key in keys:
        value = record.get(key)
        if value:
            return value
    return None


def get_raw_layers(raw_result: Any) -> List[Dict[str, Any]]:
    """Layer records of a raw analysis result; non-mapping entries are skipped."""
    if not isinstance(raw_result, Mapping):
        return []
    layers = raw_result.get('layer')
    if layers is None:
        layers = raw_result.get('layers')
    if not isinstance(layers, (list, tuple)):
        return []
    return [layer for layer in layers if isinstance(layer, Mapping)]


def layer_tree_from_record(record: Mapping[str, Any], position: int,
                           tree: List[FileTreeNode]) -> LayerTree:
    """Attach a tree to the identity fields of a raw layer record."""
    index = record.get('index')
    if isinstance(index, bool) or not isinstance(index, int):
        index = position
    layer_id = record.get('id')
    command = record.get('command')
    return LayerTree(
        layer_index=index,
        tree=tree,
        layer_id=str(layer_id) if layer_id not in (None, '') else None,
        command=command if isinstance(command, str) else None,
        size_bytes=to_number(record.get('sizeBytes')),
    )


def normalize_native_trees(raw_result: Any) -> NormalizedFileTree:
    """
    Read the analyzer's own nested trees, without any fallback.

    The aggregate comes from the first populated top-level tree key, then the
    same keys under "image"; each layer from its own tree keys.
    """
    if not isinstance(raw_result, Mapping):
        return NormalizedFileTree()

    candidate = first_truthy(raw_result, AGGREGATE_TREE_KEYS)
    if candidate is None:
        candidate = first_truthy(raw_result.get('image'), AGGREGATE_TREE_KEYS)
    aggregate = normalize_nodes(candidate)

    layers = [
        layer_tree_from_record(record, position,
                               normalize_nodes(first_truthy(record, LAYER_TREE_KEYS)))
        for position, record in enumerate(get_raw_layers(raw_result))
    ]
    return NormalizedFileTree(aggregate=aggregate, layers=layers)
