"""Command-line interface for btannounce."""

from __future__ import annotations

from btannounce.cli.main import cli

__all__ = ["cli"]
