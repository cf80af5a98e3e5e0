"""Git subprocess integration."""

from .cloner import CloneExecutor, CloneOptions, GitProcessResult, parse_progress_line

__all__ = ["CloneExecutor", "CloneOptions", "GitProcessResult", "parse_progress_line"]
