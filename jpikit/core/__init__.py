"""Core services shared by the packaging stages."""

from __future__ import annotations

from jpikit.core.config_manager import FileExtension, PluginConfig, load_config
from jpikit.core.logging_manager import LoggingManager, get_logger

__all__ = ["FileExtension", "LoggingManager", "PluginConfig", "get_logger", "load_config"]
