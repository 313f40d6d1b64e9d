"""Unit tests for the Logging Manager."""

import io
import json
import logging

import pytest
import structlog
from pythonjsonlogger import jsonlogger

from jpikit.core.logging_manager import LoggingManager, get_logger
from jpikit.utils.exceptions import ConfigurationError


@pytest.fixture
def logging_manager(capsys):
    """Create a LoggingManager and detach its handlers afterwards.

    Depends on ``capsys`` so the captured streams outlive the handlers.
    """
    managers = []

    def factory(config):
        manager = LoggingManager(config)
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        manager.shutdown()


def test_logging_manager_initialization(logging_manager):
    """Test that the LoggingManager initializes correctly."""
    manager = logging_manager({"level": "DEBUG", "format": "text"})
    manager.initialize()

    assert manager.initialized
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert not isinstance(root.handlers[0].formatter, jsonlogger.JsonFormatter)


def test_json_format(logging_manager, capsys):
    """Test that structured key/values end up in the JSON record."""
    manager = logging_manager({"level": "INFO", "format": "json"})
    manager.initialize()

    get_logger("test_component").info("Archive written", path="build/libs/widget.hpi")

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["message"] == "Archive written"
    assert record["path"] == "build/libs/widget.hpi"
    assert record["name"] == "test_component"


def test_level_filtering(logging_manager, capsys):
    manager = logging_manager({"level": "WARNING", "format": "text"})
    manager.initialize()

    logger = get_logger("test_component")
    logger.info("hidden")
    logger.warning("shown")

    err = capsys.readouterr().err
    assert "shown" in err
    assert "hidden" not in err


@pytest.mark.parametrize("config, key", [
    ({"level": "LOUD"}, "logging.level"),
    ({"format": "xml"}, "logging.format"),
])
def test_invalid_settings(logging_manager, config, key):
    """Test that unknown levels and formats are configuration errors."""
    manager = logging_manager(config)
    with pytest.raises(ConfigurationError) as excinfo:
        manager.initialize()
    assert excinfo.value.config_key == key
    assert not manager.initialized


def test_shutdown(logging_manager):
    manager = logging_manager({})
    manager.initialize()
    manager.shutdown()

    assert not manager.initialized
    assert logging.getLogger().handlers == []
    assert not structlog.is_configured()


def test_shutdown_with_closed_stream(logging_manager, monkeypatch):
    """Test that shutdown tolerates a console stream closed by someone else."""
    stream = io.StringIO()
    monkeypatch.setattr("sys.stderr", stream)
    manager = logging_manager({"format": "text"})
    manager.initialize()
    get_logger("test_component").info("before close")
    stream.close()

    manager.shutdown()

    assert not manager.initialized
    assert logging.getLogger().handlers == []
