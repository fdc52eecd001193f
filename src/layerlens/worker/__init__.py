"""Background file tree computation."""

from .orchestrator import FileTreeOrchestrator, FileTreeState, FileTreeStatus

__all__ = ["FileTreeOrchestrator", "FileTreeState", "FileTreeStatus"]
