"""Utility modules for layerlens."""

from .path_utils import PathUtils
from .tree_builder import FileTreeBuilder

__all__ = ["PathUtils", "FileTreeBuilder"]
