"""Command-line interface for opencode-loop."""

from opencode_loop.cli.cli import app, bootstrap

__all__ = ["app", "bootstrap"]
