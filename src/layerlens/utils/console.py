"""Themed terminal output for layerlens.

Wraps a Rich console with retro themes, status lines, tables and trees
used by the CLI commands.
"""

import os
import random
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text
from rich.theme import Theme
from rich.tree import Tree

from ..core.models import ChangeKind, FileTreeNode, NodeType
from .formatting import format_bytes


class StatusType(Enum):
    """Standard status types with associated symbols."""
    SUCCESS = ("[✓]", "success", "green")
    ERROR = ("[x]", "error", "red")
    WARNING = ("[!]", "warning", "yellow")
    INFO = ("[!]", "info", "cyan")
    RUNNING = ("[~]", "running", "blue")
    PENDING = ("[.]", "pending", "dim")


@dataclass
class ThemeColors:
    """Color definitions for a theme."""
    info: str
    warning: str
    error: str
    success: str
    highlight: str
    header: str
    path: str
    number: str
    dim: str
    added: str
    modified: str
    removed: str


THEMES = {
    'manhattan': ThemeColors(
        info='cyan',
        warning='yellow',
        error='red',
        success='green',
        highlight='bright_cyan',
        header='bold bright_cyan',
        path='white',
        number='bright_blue',
        dim='bright_black',
        added='green',
        modified='yellow',
        removed='red',
    ),
    'green': ThemeColors(
        info='green',
        warning='yellow',
        error='red',
        success='bright_green',
        highlight='bold green',
        header='bold green',
        path='bright_green',
        number='green',
        dim='green',
        added='bright_green',
        modified='yellow',
        removed='red',
    ),
    'matrix': ThemeColors(
        info='bright_green',
        warning='yellow',
        error='red',
        success='green',
        highlight='bold bright_green',
        header='bold bright_green',
        path='green',
        number='bright_green',
        dim='green',
        added='bright_white',
        modified='yellow',
        removed='red',
    ),
    'sunset': ThemeColors(
        info='orange3',
        warning='yellow',
        error='red3',
        success='green',
        highlight='bold orange1',
        header='bold orange1',
        path='wheat1',
        number='orange1',
        dim='grey50',
        added='green',
        modified='gold1',
        removed='red3',
    ),
}

THEME_NAMES = list(THEMES)


class ConsoleManager:
    """Console management with theme support."""

    def __init__(self, theme: str = "manhattan", file: Optional[Any] = None,
                 width: Optional[int] = None):
        self.theme_name = theme
        self.theme_colors = THEMES.get(theme, THEMES['manhattan'])
        self.file = file or sys.stdout
        self.console = Console(
            theme=self._create_rich_theme(),
            file=self.file,
            width=width,
            highlight=False,
        )

    def _create_rich_theme(self) -> Theme:
        """Create Rich theme from our theme colors."""
        colors = self.theme_colors
        return Theme({
            'info': colors.info,
            'warning': colors.warning,
            'error': colors.error,
            'success': colors.success,
            'highlight': colors.highlight,
            'header': colors.header,
            'path': colors.path,
            'number': colors.number,
            'dim': colors.dim,
            'change.added': colors.added,
            'change.modified': colors.modified,
            'change.removed': colors.removed,
        })

    def print(self, *args, **kwargs):
        self.console.print(*args, **kwargs)

    def print_status(self, status: StatusType, message: str, prefix: str = ""):
        """Print a status line with icon."""
        icon, _, color = status.value
        status_text = Text()
        if prefix:
            status_text.append(prefix + " ")
        status_text.append(f"{icon} ", style=color)
        status_text.append(message)
        self.console.print(status_text)

    def print_error(self, message: str):
        self.print_status(StatusType.ERROR, message)

    def print_success(self, message: str):
        self.print_status(StatusType.SUCCESS, message)

    def print_info(self, message: str):
        self.print_status(StatusType.INFO, message)

    def print_warning(self, message: str):
        self.print_status(StatusType.WARNING, message)

    def print_separator(self, char: str = "═", width: int = 60):
        self.console.print(char * width, style="dim")

    def print_exception(self):
        self.console.print_exception()

    def status(self, message: str):
        """Spinner with an updatable status line."""
        return self.console.status(message)

    def print_table(self, headers: Sequence[str], rows: Iterable[Sequence[Any]],
                    title: Optional[str] = None, justify_right: Sequence[int] = ()):
        """Print rows as a table; columns listed in justify_right are right-aligned."""
        table = Table(title=title, header_style="header", border_style="dim")
        for i, header in enumerate(headers):
            table.add_column(header, justify="right" if i in justify_right else "left")
        for row in rows:
            table.add_row(*(cell if isinstance(cell, Text) else str(cell) for cell in row))
        self.console.print(table)

    def change_text(self, change: str) -> Text:
        style = f"change.{change}" if change in ('added', 'modified', 'removed') else "dim"
        return Text(change, style=style)

    def print_file_tree(self, nodes: List[FileTreeNode], title: str = "/",
                        max_depth: Optional[int] = None):
        """Render file tree nodes with sizes and change markers."""
        root = Tree(Text(title, style="highlight"))
        for node in nodes:
            self._add_tree_node(root, node, 1, max_depth)
        self.console.print(root)

    def _add_tree_node(self, parent: Tree, node: FileTreeNode, depth: int,
                       max_depth: Optional[int]):
        label = Text()
        style = "highlight" if node.node_type == NodeType.DIRECTORY else "path"
        label.append(node.name, style=style)
        if node.node_type == NodeType.LINK:
            label.append(" @", style="dim")
        size = node.effective_size
        if size is not None:
            label.append(f"  {format_bytes(size)}", style="number")
        if node.change_kind not in (ChangeKind.UNKNOWN, ChangeKind.UNCHANGED):
            label.append("  ")
            label.append_text(self.change_text(node.change_kind.value))

        branch = parent.add(label)
        if not node.children:
            return
        if max_depth is not None and depth >= max_depth:
            branch.add(Text(f"… {len(node.children)} more", style="dim"))
            return
        for child in node.children:
            self._add_tree_node(branch, child, depth + 1, max_depth)

    def create_progress(self) -> Progress:
        """Progress display for long-running bulk work."""
        return Progress(
            TextColumn("[info]{task.description}"),
            BarColumn(),
            TextColumn("[number]{task.completed}/{task.total}"),
            TimeElapsedColumn(),
            console=self.console,
        )


def get_alternating_theme() -> str:
    """Manhattan during day, sunset in evening, with 20% chance for any theme."""
    if os.environ.get('LAYERLENS_THEME') in THEMES:
        return os.environ['LAYERLENS_THEME']

    local_hour = datetime.now().hour
    is_day = 6 <= local_hour < 18
    base_theme = 'manhattan' if is_day else 'sunset'

    if random.random() < 0.2:
        return random.choice(THEME_NAMES)
    return base_theme
