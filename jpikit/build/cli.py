"""Command-line interface for jpikit.

This module provides the ``jpikit`` command for packaging a plugin, printing
its classpaths and manifest, and staging the files used by the test harness.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from jpikit.__version__ import __version__
from jpikit.build.builder import PluginBuilder
from jpikit.core.config_manager import PluginConfig, load_config
from jpikit.core.logging_manager import LoggingManager
from jpikit.plugin_system.roles import RoleName
from jpikit.utils.exceptions import JpiError


def _load(args: argparse.Namespace) -> PluginConfig:
    config = load_config(args.config)
    logging_config = dict(config.logging)
    if args.log_level:
        logging_config["level"] = args.log_level
    if args.log_format:
        logging_config["format"] = args.log_format
    LoggingManager(logging_config).initialize()
    return config


def package_command(args: argparse.Namespace) -> int:
    """Handle the package command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config = _load(args)
        result = PluginBuilder(config).build()
        print(result.archive)
        return 0

    except JpiError as e:
        print(f"Error packaging plugin: {e}", file=sys.stderr)
        return 1


def classpath_command(args: argparse.Namespace) -> int:
    """Handle the classpath command."""
    try:
        config = _load(args)
        for path in PluginBuilder(config).classpath(args.role):
            print(path)
        return 0

    except JpiError as e:
        print(f"Error resolving {args.role}: {e}", file=sys.stderr)
        return 1


def test_dependencies_command(args: argparse.Namespace) -> int:
    """Handle the test-dependencies command."""
    try:
        config = _load(args)
        names = PluginBuilder(config).stage_test_dependencies(Path(args.target))
        for name in names:
            print(name)
        return 0

    except JpiError as e:
        print(f"Error staging test dependencies: {e}", file=sys.stderr)
        return 1


def manifest_command(args: argparse.Namespace) -> int:
    """Handle the manifest command."""
    try:
        config = _load(args)
        for key, value in PluginBuilder(config).manifest().items():
            print(f"{key}: {value}")
        return 0

    except JpiError as e:
        print(f"Error assembling manifest: {e}", file=sys.stderr)
        return 1


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line interface.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = argparse.ArgumentParser(
        prog="jpikit",
        description="Package Jenkins plugins as hpi/jpi archives",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", choices=sorted(LoggingManager.LOG_LEVELS),
                        help="Log level (overrides the configuration file)")
    parser.add_argument("--log-format", choices=LoggingManager.LOG_FORMATS,
                        help="Log format (overrides the configuration file)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    def add_config(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--config", "-c", default="plugin.yaml",
                         help="Plugin configuration file (YAML or JSON)")

    # Package command
    package_parser = subparsers.add_parser("package", help="Build the plugin archive")
    add_config(package_parser)

    # Classpath command
    classpath_parser = subparsers.add_parser("classpath", help="Print the jar files of a role")
    add_config(classpath_parser)
    classpath_parser.add_argument("--role", default=RoleName.COMPILE_CLASSPATH.value,
                                  help="Role to resolve")

    # Test dependencies command
    test_parser = subparsers.add_parser("test-dependencies",
                                        help="Stage the plugins used by the test harness")
    add_config(test_parser)
    test_parser.add_argument("--target", default="build/resources/test",
                             help="Directory receiving the staged plugins")

    # Manifest command
    manifest_parser = subparsers.add_parser("manifest", help="Print the manifest attributes")
    add_config(manifest_parser)

    args = parser.parse_args(args)

    if args.command == "package":
        return package_command(args)
    elif args.command == "classpath":
        return classpath_command(args)
    elif args.command == "test-dependencies":
        return test_dependencies_command(args)
    elif args.command == "manifest":
        return manifest_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
