#!/usr/bin/env python3
"""
opencode-loop: run an agent until it declares its task complete or blocked.

This module is a thin shim that exposes the CLI app from opencode_loop.cli.

Usage:
    opencode-loop run [OPTIONS] [PROMPT...]
    opencode-loop status
"""

from .cli import bootstrap

# Load the user .env before the CLI app reads any configuration
bootstrap()

from .cli import app  # noqa: E402

if __name__ == "__main__":
    app()
