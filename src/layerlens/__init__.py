"""layerlens - container image layer and file tree analysis."""

__version__ = "0.1.0"
