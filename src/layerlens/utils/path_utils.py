"""Path normalization utilities for image filesystem paths."""

from typing import List, Optional, Tuple


class PathUtils:
    """Utilities for consistent handling of slash-separated layer paths."""

    @staticmethod
    def split(path: str) -> List[str]:
        """
        Split a path into its non-empty components.

        Leading, trailing and repeated slashes are ignored, so "/app//bin/"
        and "app/bin" both yield ["app", "bin"].

        Args:
            path: Slash-separated path

        Returns:
            List of path components
        """
        return [part for part in path.split('/') if part]

    @staticmethod
    def join_path_components(components: List[str]) -> str:
        """
        Join path components with forward slashes.

        Args:
            components: List of path components

        Returns:
            Joined path with forward slashes
        """
        return '/'.join(components)

    @staticmethod
    def name_from_path(path: str) -> str:
        """Return the last non-empty segment of a path, or the path itself."""
        parts = PathUtils.split(path)
        if not parts:
            return path
        return parts[-1]

    @staticmethod
    def strip_trailing_slashes(path: str) -> Optional[str]:
        """Strip trailing slashes; None when nothing remains."""
        trimmed = path.rstrip('/')
        return trimmed or None

    @staticmethod
    def sort_key(path: str) -> Tuple[str, ...]:
        """
        Component-wise sort key.

        Plain string ordering puts "a-b" between "a" and "a/b" because '-'
        sorts before '/'. Comparing component tuples keeps every descendant
        directly after its ancestor.
        """
        return tuple(path.split('/'))

    @staticmethod
    def is_descendant(path: str, prefix: str) -> bool:
        """True when path lies strictly below prefix."""
        return path.startswith(prefix + '/')
