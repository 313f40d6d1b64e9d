"""Pytest configuration and fixtures for jpikit tests."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

import pytest

from jpikit.core.config_manager import PluginConfig
from jpikit.plugin_system.artifacts import Dependency, ModuleId, ResolvedArtifact
from jpikit.plugin_system.resolver import ResolutionFailure, ResolutionResult


class FakeResolver:
    """In-memory resolver backed by a catalog of published modules.

    Binaries are created on demand under ``base_dir`` so that the packaging
    stages can copy them.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.modules: Dict[Tuple[str, str, str], Tuple[str, List[Dependency]]] = {}
        self.calls: List[Tuple[str, Tuple[Dependency, ...]]] = []
        self._lock = threading.Lock()

    def publish(
            self, coordinate: str, packaging: str = "jar", dependencies: Iterable[str] = ()
    ) -> None:
        group, name, version = coordinate.split(":")
        self.modules[(group, name, version)] = (
            packaging, [Dependency.parse(d) for d in dependencies]
        )

    def calls_for(self, role: str) -> int:
        return sum(1 for called, _ in self.calls if called == role)

    def _file(self, group: str, name: str, version: str, extension: str) -> Path:
        path = self.base_dir / group / f"{name}-{version}.{extension}"
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(f"{group}:{name}:{version}@{extension}".encode("utf-8"))
        return path

    def resolve(
            self,
            role: str,
            dependencies: Sequence[Dependency],
            exclusions: Sequence[ModuleId] = (),
    ) -> ResolutionResult:
        with self._lock:
            self.calls.append((role, tuple(dependencies)))
            result = ResolutionResult()
            excluded = set(exclusions)
            seen = set()
            queue = list(dependencies)
            while queue:
                dependency = queue.pop(0)
                if dependency.module_id in excluded:
                    continue
                key = (dependency.group, dependency.name, dependency.version or "")
                if key not in self.modules:
                    result.errors.append(ResolutionFailure(dependency.coordinate, "not found"))
                    continue
                packaging, children = self.modules[key]
                extension = dependency.extension or packaging
                if (key, extension) in seen:
                    continue
                seen.add((key, extension))
                result.artifacts.append(ResolvedArtifact(
                    group=key[0],
                    name=key[1],
                    version=key[2],
                    type=extension,
                    extension=extension,
                    file=self._file(key[0], key[1], key[2], extension),
                ))
                if dependency.transitive:
                    queue.extend(children)
            return result


@pytest.fixture
def fake_resolver(tmp_path: Path) -> FakeResolver:
    """A resolver with a small catalog of plugins and libraries."""
    resolver = FakeResolver(tmp_path / "repository")
    resolver.publish("org.jenkins-ci.main:jenkins-core:2.401", "jar",
                     ["org.jenkins-ci.main:remoting:3107"])
    resolver.publish("org.jenkins-ci.main:remoting:3107")
    resolver.publish("org.jenkins-ci.plugins:credentials:1.0", "hpi",
                     ["com.example:cred-lib:1.0", "org.jenkins-ci.plugins:structs:2.0"])
    resolver.publish("org.jenkins-ci.plugins:structs:2.0", "hpi")
    resolver.publish("org.jenkins-ci.plugins:git:4.0", "jpi")
    resolver.publish("org.jenkins-ci.plugins:junit:1.5", "hpi")
    resolver.publish("com.example:cred-lib:1.0")
    resolver.publish("com.example:lib:2.0", "jar", ["com.example:util:1.0"])
    resolver.publish("com.example:util:1.0")
    resolver.publish("com.example:runner:1.0")
    return resolver


@pytest.fixture
def plugin_config(tmp_path: Path) -> PluginConfig:
    """Configuration of a plugin with core, plugin and library dependencies."""
    return PluginConfig(
        project_name="widget-plugin",
        group="org.example",
        version="1.0.0",
        core_version="2.401",
        project_dir=tmp_path,
        dependencies={
            "jenkins_core": ["org.jenkins-ci.main:jenkins-core:2.401"],
            "jenkins_plugins": ["org.jenkins-ci.plugins:credentials:1.0"],
            "optional_jenkins_plugins": ["org.jenkins-ci.plugins:git:4.0"],
            "jenkins_test": ["org.jenkins-ci.plugins:junit:1.5"],
            "implementation": ["com.example:lib:2.0"],
            "runtime_only": ["com.example:util:1.0", "com.example:runner:1.0"],
        },
    )
