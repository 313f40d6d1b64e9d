"""Unit tests for the manifest assembler."""

from __future__ import annotations

from collections import OrderedDict

import pytest

from jpikit.core.config_manager import Developer, PluginConfig
from jpikit.plugin_system.manifest import (
    FINGERPRINT_INPUT,
    MANIFEST_INPUT,
    ArchiveSpec,
    ManifestAssembler,
    fingerprint,
    read_manifest,
    write_manifest,
)
from jpikit.plugin_system.project import PluginProject
from jpikit.utils.exceptions import ConfigurationError


class TestManifestAssembler:
    """Tests for the ManifestAssembler class."""

    def test_attribute_order(self, plugin_config, fake_resolver):
        plugin_config.url = "https://plugins.example.org/widget"
        plugin_config.plugin_first_class_loader = True
        plugin_config.developers = [Developer(id="jdoe", name="Jane Doe", email="jane@example.org")]
        project = PluginProject(plugin_config, fake_resolver)

        attributes = ManifestAssembler(plugin_config).assemble(project)

        assert list(attributes) == [
            "Manifest-Version",
            "Created-By",
            "Short-Name",
            "Long-Name",
            "Group-Id",
            "Url",
            "Extension-Name",
            "Implementation-Title",
            "Implementation-Version",
            "Plugin-Version",
            "Jenkins-Version",
            "PluginFirstClassLoader",
            "Plugin-Dependencies",
            "Plugin-Developers",
        ]
        assert attributes["Short-Name"] == "widget"
        assert attributes["Long-Name"] == "widget"
        assert attributes["Plugin-Version"] == "1.0.0"
        assert attributes["Jenkins-Version"] == "2.401"
        assert attributes["Plugin-Developers"] == "Jane Doe:jdoe:jane@example.org"

    def test_plugin_dependencies(self, plugin_config, fake_resolver):
        """Test that optional plugins are marked with an optional resolution."""
        project = PluginProject(plugin_config, fake_resolver)
        attributes = ManifestAssembler(plugin_config).assemble(project)
        assert attributes["Plugin-Dependencies"] == (
            "credentials:1.0,git:4.0;resolution:=optional"
        )

    def test_rewritten_jars_are_not_plugin_dependencies(self, plugin_config, fake_resolver):
        project = PluginProject(plugin_config, fake_resolver)
        project.freeze_and_resolve()
        attributes = ManifestAssembler(plugin_config).assemble(project)
        assert "structs" not in attributes["Plugin-Dependencies"]

    def test_display_name(self):
        config = PluginConfig(project_name="widget", version="1.0", display_name="Widget Plugin")
        attributes = ManifestAssembler(config).assemble()
        assert attributes["Long-Name"] == "Widget Plugin"
        assert "Plugin-Dependencies" not in attributes

    @pytest.mark.parametrize("settings", [
        {"project_name": "widget"},
        {"version": "1.0"},
    ])
    def test_missing_metadata(self, settings):
        """Test that a missing short name or version fails before any archive work."""
        target = ArchiveSpec("hpi")
        assembler = ManifestAssembler(PluginConfig(**settings))
        with pytest.raises(ConfigurationError):
            assembler.apply(assembler.assemble(), [target])
        assert target.manifest == OrderedDict()
        assert target.inputs == {}

    def test_apply_merges_and_records_inputs(self, plugin_config):
        """Test that apply keeps foreign attributes and records a fingerprint."""
        assembler = ManifestAssembler(plugin_config)
        attributes = assembler.assemble()
        jar = ArchiveSpec("jar")
        package = ArchiveSpec("hpi", manifest=OrderedDict([("Build-Jdk", "17")]))

        digest = assembler.apply(attributes, [jar, package])

        assert package.manifest["Build-Jdk"] == "17"
        assert package.manifest["Short-Name"] == "widget"
        assert jar.manifest == attributes
        for target in (jar, package):
            assert target.inputs[MANIFEST_INPUT] == dict(attributes)
            assert target.inputs[FINGERPRINT_INPUT] == digest
            assert target.fingerprint == digest

    def test_fingerprint_tracks_metadata(self, plugin_config):
        first = fingerprint(ManifestAssembler(plugin_config).assemble())
        again = fingerprint(ManifestAssembler(plugin_config).assemble())
        plugin_config.version = "1.0.1"
        changed = fingerprint(ManifestAssembler(plugin_config).assemble())
        assert first == again
        assert first != changed


class TestManifestFormat:
    """Tests for the JAR manifest serialization."""

    def test_line_endings_and_terminator(self):
        data = write_manifest(OrderedDict([("Short-Name", "widget")]))
        assert data == b"Manifest-Version: 1.0\r\nShort-Name: widget\r\n\r\n"

    def test_long_values_are_wrapped(self):
        value = ",".join(f"plugin-{i}:1.{i}" for i in range(30))
        data = write_manifest(OrderedDict([("Manifest-Version", "1.0"), ("Plugin-Dependencies", value)]))

        lines = data.split(b"\r\n")
        assert all(len(line) <= 72 for line in lines)
        assert lines[2].startswith(b" ")
        assert read_manifest(data)["Plugin-Dependencies"] == value

    def test_multibyte_characters_are_not_split(self):
        value = "é" * 80
        data = write_manifest(OrderedDict([("Long-Name", value)]))
        assert all(len(line) <= 72 for line in data.split(b"\r\n"))
        assert read_manifest(data)["Long-Name"] == value
