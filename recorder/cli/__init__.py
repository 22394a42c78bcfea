"""Command-line interface for Recorder Sentinel."""

from .main import ExitCode, app

__all__ = ["app", "ExitCode"]
