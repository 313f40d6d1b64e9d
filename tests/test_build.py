"""Tests for the jpikit build pipeline.

This module contains tests for the plugin builder and the command-line
interface, running the whole packaging pipeline against a fake resolver.
"""

from __future__ import annotations

import pathlib
import zipfile
from unittest import mock

import pytest
import yaml

from jpikit.build.builder import PluginBuilder
from jpikit.build.cli import main
from jpikit.core.config_manager import FileExtension, PluginConfig
from jpikit.core.logging_manager import LoggingManager
from jpikit.plugin_system.manifest import read_manifest
from jpikit.utils.exceptions import ConfigurationError, ResolutionError


@pytest.fixture
def project_dir(plugin_config: PluginConfig) -> pathlib.Path:
    """Compiled classes and a license report in the project directory."""
    root = plugin_config.project_dir
    classes = root / "build" / "classes"
    (classes / "org" / "example").mkdir(parents=True)
    (classes / "org" / "example" / "WidgetBuilder.class").write_bytes(b"\xca\xfe\xba\xbe")
    (classes / "index.jelly").write_text("<div>Widget</div>", encoding="utf-8")
    licenses = root / "build" / "licenses"
    licenses.mkdir(parents=True)
    (licenses / "licenses.xml").write_text("<dependencies/>", encoding="utf-8")
    plugin_config.license_dir = pathlib.Path("build/licenses")
    return root


def _lib_entries(archive: pathlib.Path):
    with zipfile.ZipFile(archive) as zf:
        return sorted(n[len("WEB-INF/lib/"):] for n in zf.namelist() if n.startswith("WEB-INF/lib/"))


class TestPluginBuilder:
    """Tests for the PluginBuilder class."""

    def test_build(self, plugin_config, fake_resolver, project_dir):
        """Test the archive produced by a full build."""
        result = PluginBuilder(plugin_config, fake_resolver).build()

        assert result.archive == project_dir / "build" / "libs" / "widget.hpi"
        assert result.library_jar == project_dir / "build" / "libs" / "widget-plugin-1.0.0.jar"
        assert result.injected_test == "InjectedTest"

        with zipfile.ZipFile(result.archive) as zf:
            names = zf.namelist()
            manifest = read_manifest(zf.read("META-INF/MANIFEST.MF"))
            assert zf.read("WEB-INF/licenses.xml") == b"<dependencies/>"
            with zf.open("WEB-INF/lib/widget-plugin-1.0.0.jar") as nested:
                with zipfile.ZipFile(nested) as jar:
                    assert "org/example/WidgetBuilder.class" in jar.namelist()
                    assert read_manifest(jar.read("META-INF/MANIFEST.MF")) == manifest

        assert names[0] == "META-INF/MANIFEST.MF"
        assert manifest["Short-Name"] == "widget"
        assert manifest == result.manifest

    def test_plugins_compiled_against_but_not_bundled(self, plugin_config, fake_resolver, project_dir):
        """Test that plugin dependencies stay out of the library directory."""
        builder = PluginBuilder(plugin_config, fake_resolver)
        result = builder.build()

        lib = _lib_entries(result.archive)
        assert lib == ["lib-2.0.jar", "runner-1.0.jar", "util-1.0.jar", "widget-plugin-1.0.0.jar"]

        compile_jars = [p.name for p in builder.project.compile_classpath()]
        for plugin in ("credentials-1.0.jar", "git-4.0.jar", "structs-2.0.jar"):
            assert plugin in compile_jars
            assert plugin not in lib

    def test_ordinary_libraries_bundled_once(self, plugin_config, fake_resolver, project_dir):
        """Test that a library pulled in by several roles is bundled once."""
        plugin_config.dependencies["implementation"].append("com.example:util:1.0")
        result = PluginBuilder(plugin_config, fake_resolver).build()

        lib = _lib_entries(result.archive)
        assert lib.count("util-1.0.jar") == 1
        assert [a.name for a in result.bundled].count("util") == 1

    def test_jpi_extension(self, plugin_config, fake_resolver, project_dir):
        plugin_config = plugin_config.model_copy(update={"file_extension": FileExtension.JPI})
        result = PluginBuilder(plugin_config, fake_resolver).build()
        assert result.archive.name == "widget.jpi"

    def test_reproducible_build(self, plugin_config, fake_resolver, project_dir):
        """Test that building twice gives byte-identical archives."""
        first = PluginBuilder(plugin_config, fake_resolver).build().archive.read_bytes()
        second = PluginBuilder(plugin_config, fake_resolver).build().archive.read_bytes()
        assert first == second

    def test_disabled_test_injection(self, plugin_config, fake_resolver, project_dir):
        plugin_config.disabled_test_injection = True
        result = PluginBuilder(plugin_config, fake_resolver).build()
        assert result.injected_test is None

    def test_missing_version_aborts_before_output(self, plugin_config, fake_resolver, project_dir):
        """Test that missing metadata fails before any resolution or archive output."""
        plugin_config.version = None
        with pytest.raises(ConfigurationError):
            PluginBuilder(plugin_config, fake_resolver).build()
        assert fake_resolver.calls == []
        assert not (project_dir / "build" / "libs").exists()

    def test_resolution_error_aborts_assembly(self, plugin_config, fake_resolver, project_dir):
        plugin_config.dependencies["implementation"].append("com.example:missing:1.0")
        with pytest.raises(ResolutionError, match="com.example:missing:1.0"):
            PluginBuilder(plugin_config, fake_resolver).build()
        assert not (project_dir / "build" / "libs").exists()

    def test_default_resolver_uses_configured_repositories(self, plugin_config, tmp_path):
        plugin_config.repositories = [tmp_path / "m2"]
        builder = PluginBuilder(plugin_config)
        assert builder.project.resolver.repositories == [tmp_path / "m2"]

    def test_stage_test_dependencies(self, plugin_config, fake_resolver, project_dir):
        target = project_dir / "build" / "resources" / "test"
        names = PluginBuilder(plugin_config, fake_resolver).stage_test_dependencies(target)
        assert "credentials" in names
        assert (target / "test-dependencies" / "index").exists()
        assert (target / "the.jpl").exists()


class TestCli:
    """Tests for the command-line interface."""

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "plugin.yaml"
        path.write_text(yaml.dump({
            "project_name": "widget-plugin",
            "version": "1.0.0",
            "repositories": [str(tmp_path / "m2")],
            "dependencies": {"jenkins_plugins": ["org.jenkins-ci.plugins:credentials:1.0"]},
        }), encoding="utf-8")
        return path

    @pytest.fixture(autouse=True)
    def reset_logging(self):
        with mock.patch.object(LoggingManager, "initialize"):
            yield

    def test_manifest_command(self, config_file, capsys):
        assert main(["manifest", "--config", str(config_file)]) == 0
        out = capsys.readouterr().out
        assert "Short-Name: widget" in out
        assert "Plugin-Dependencies: credentials:1.0" in out

    def test_package_command(self, config_file, capsys):
        with mock.patch("jpikit.build.cli.PluginBuilder") as builder_class:
            builder_class.return_value.build.return_value.archive = pathlib.Path("build/libs/widget.hpi")
            assert main(["package", "--config", str(config_file)]) == 0
        assert capsys.readouterr().out.strip() == str(pathlib.Path("build/libs/widget.hpi"))

    def test_classpath_command(self, config_file, capsys):
        with mock.patch("jpikit.build.cli.PluginBuilder") as builder_class:
            builder_class.return_value.classpath.return_value = [pathlib.Path("/repo/a.jar")]
            assert main(["classpath", "--config", str(config_file), "--role", "runtime_classpath"]) == 0
            builder_class.return_value.classpath.assert_called_once_with("runtime_classpath")
        assert capsys.readouterr().out.strip() == str(pathlib.Path("/repo/a.jar"))

    def test_resolution_failure_exit_code(self, config_file, capsys):
        """Test that a missing module yields exit code 1 and a message on stderr."""
        assert main(["classpath", "--config", str(config_file)]) == 1
        assert "credentials" in capsys.readouterr().err

    def test_missing_config(self, tmp_path, capsys):
        assert main(["package", "--config", str(tmp_path / "absent.yaml")]) == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_no_command(self, capsys):
        assert main([]) == 1
