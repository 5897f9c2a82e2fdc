"""Command-line interface."""

from plansmith.cli.main import app

__all__ = ["app"]
