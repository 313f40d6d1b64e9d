"""Build pipeline for jpikit.

This package runs the packaging steps in order and exposes them on the
command line.

Modules:
    builder: Pipeline from configuration to plugin archive
    cli: Command-line interface
"""

from __future__ import annotations

from jpikit.build.builder import BuildResult, PluginBuilder
from jpikit.build.cli import main as build_cli

__all__ = [
    "BuildResult",
    "PluginBuilder",
    "build_cli",
]
