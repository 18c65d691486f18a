"""
Worklog CLI.

- commands.py: Typer app and entry point (sync, add, del, purge, configure, timer ...)
"""

from worklog.cli.commands import app, run

__all__ = ["app", "run"]
