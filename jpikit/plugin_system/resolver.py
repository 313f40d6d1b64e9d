"""Dependency resolution against local Maven-layout repositories.

The packaging stages only depend on the :class:`Resolver` protocol. The
:class:`FileRepositoryResolver` implementation reads POM files from one or more
repository directories on disk; remote repository protocols are not supported.
"""

from __future__ import annotations

import re
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
    Union,
    runtime_checkable,
)

from jpikit.core.logging_manager import get_logger
from jpikit.plugin_system.artifacts import Dependency, ModuleId, ResolvedArtifact, version_key

# Scopes whose dependencies end up on the consumer's classpath.
TRANSITIVE_SCOPES = {"compile", "runtime"}

# Packaging types that produce a binary of the same extension.
ARCHIVE_PACKAGINGS = {"jar", "hpi", "jpi", "war"}

_PROPERTY_RE = re.compile(r"\$\{([^}]+)\}")


@dataclass(frozen=True)
class ResolutionFailure:
    """A single problem encountered while resolving a role."""

    module: str
    message: str

    def __str__(self) -> str:
        return f"{self.module}: {self.message}"


@dataclass
class ResolutionResult:
    """Outcome of resolving one role."""

    artifacts: List[ResolvedArtifact] = field(default_factory=list)
    errors: List[ResolutionFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@runtime_checkable
class Resolver(Protocol):
    """Capability interface of the dependency resolver."""

    def resolve(
            self,
            role: str,
            dependencies: Sequence[Dependency],
            exclusions: Sequence[ModuleId] = (),
    ) -> ResolutionResult:
        ...


@dataclass
class PomInfo:
    """The parts of a POM file needed for resolution.

    ``properties`` and ``managed`` hold the effective values after merging the
    parent chain, so a child POM can be parsed against them.
    """

    group: str
    name: str
    version: str
    packaging: str = "jar"
    dependencies: List[Tuple[Dependency, str, bool]] = field(default_factory=list)
    parent: Optional[Tuple[str, str, str]] = None
    properties: Dict[str, str] = field(default_factory=dict)
    managed: Dict[ModuleId, str] = field(default_factory=dict)


# Loads the effective POM of group/name/version, ``None`` when it is absent.
PomLoader = Callable[[str, str, str], Optional[PomInfo]]


def _strip_namespace(root: ET.Element) -> None:
    for element in root.iter():
        if isinstance(element.tag, str) and "}" in element.tag:
            element.tag = element.tag.split("}", 1)[1]


def _text(element: Optional[ET.Element], path: str) -> Optional[str]:
    if element is None:
        return None
    child = element.find(path)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def parse_pom(path: Union[str, Path], load_pom: Optional[PomLoader] = None) -> PomInfo:
    """Parse the coordinates, packaging and dependencies out of a POM file.

    When ``load_pom`` is given, the ``<parent>`` POM and any ``import``-scoped
    BOMs are loaded through it: their properties, ``dependencyManagement``
    versions and dependencies are inherited, with the child's own values taking
    precedence. Dependencies without a version take the managed one.
    ``${...}`` references to ``project.*`` values and properties are
    substituted.

    Raises:
        ValueError: If the file is not a readable POM
    """
    try:
        root = ET.parse(str(path)).getroot()
    except ET.ParseError as e:
        raise ValueError(f"Invalid POM file {path}: {e}") from e
    _strip_namespace(root)

    parent = root.find("parent")
    group = _text(root, "groupId") or _text(parent, "groupId")
    version = _text(root, "version") or _text(parent, "version")
    name = _text(root, "artifactId")
    if not (group and name and version):
        raise ValueError(f"POM file {path} does not declare complete coordinates")

    parent_coordinates = None
    parent_info = None
    if parent is not None:
        parent_coordinates = (
            _text(parent, "groupId") or group,
            _text(parent, "artifactId") or "",
            _text(parent, "version") or version,
        )
        if load_pom is not None and parent_coordinates[1]:
            parent_info = load_pom(*parent_coordinates)

    properties: Dict[str, str] = dict(parent_info.properties) if parent_info else {}
    properties.update({
        "project.groupId": group,
        "project.artifactId": name,
        "project.version": version,
        "pom.version": version,
        "version": version,
    })
    if parent_coordinates is not None:
        properties["project.parent.groupId"] = parent_coordinates[0]
        properties["project.parent.version"] = parent_coordinates[2]
    props = root.find("properties")
    if props is not None:
        for prop in props:
            if isinstance(prop.tag, str) and prop.text is not None:
                properties[prop.tag] = prop.text.strip()

    def substitute(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        # Properties may reference each other; a few passes settle common chains.
        for _ in range(5):
            replaced = _PROPERTY_RE.sub(lambda m: properties.get(m.group(1), m.group(0)), value)
            if replaced == value:
                break
            value = replaced
        return value

    info = PomInfo(
        group=group,
        name=name,
        version=version,
        packaging=(_text(root, "packaging") or "jar").lower(),
        parent=parent_coordinates,
        properties=properties,
        managed=dict(parent_info.managed) if parent_info else {},
    )

    explicit: Dict[ModuleId, str] = {}
    for dep in root.findall("dependencyManagement/dependencies/dependency"):
        dep_group = substitute(_text(dep, "groupId"))
        dep_name = substitute(_text(dep, "artifactId"))
        dep_version = substitute(_text(dep, "version"))
        if not (dep_group and dep_name and dep_version):
            continue
        scope = (substitute(_text(dep, "scope")) or "compile").lower()
        if scope == "import":
            bom = load_pom(dep_group, dep_name, dep_version) if load_pom is not None else None
            if bom is not None:
                for module, managed_version in bom.managed.items():
                    info.managed.setdefault(module, managed_version)
            continue
        explicit[ModuleId(dep_group, dep_name)] = dep_version
    info.managed.update(explicit)

    declared: Set[ModuleId] = set()
    deps = root.find("dependencies")
    if deps is not None:
        for dep in deps.findall("dependency"):
            dep_group = substitute(_text(dep, "groupId"))
            dep_name = substitute(_text(dep, "artifactId"))
            if not dep_group or not dep_name:
                continue
            module = ModuleId(dep_group, dep_name)
            declared.add(module)
            info.dependencies.append((
                Dependency(
                    group=dep_group,
                    name=dep_name,
                    version=substitute(_text(dep, "version")) or info.managed.get(module),
                    classifier=substitute(_text(dep, "classifier")),
                ),
                (substitute(_text(dep, "scope")) or "compile").lower(),
                (_text(dep, "optional") or "false").lower() == "true",
            ))
    if parent_info is not None:
        info.dependencies.extend(
            entry for entry in parent_info.dependencies if entry[0].module_id not in declared
        )
    return info


class FileRepositoryResolver:
    """Resolver for Maven-layout repositories on the local file system.

    Resolution walks the declared dependencies and their POM-declared
    compile/runtime dependencies. When several versions of a module are
    requested the highest one wins, unless ``fail_on_version_conflict`` is set,
    in which case the conflict is reported as a failure.
    """

    def __init__(
            self,
            repositories: Sequence[Union[str, Path]],
            fail_on_version_conflict: bool = False,
    ) -> None:
        self.repositories = [Path(r).expanduser() for r in repositories]
        self.fail_on_version_conflict = fail_on_version_conflict
        self._logger = get_logger("resolver")
        self._pom_cache: Dict[Tuple[str, str, str], Optional[PomInfo]] = {}
        self._lock = threading.Lock()

    def _module_dir(self, repository: Path, group: str, name: str, version: str) -> Path:
        return repository.joinpath(*group.split(".")) / name / version

    def find_file(
            self,
            group: str,
            name: str,
            version: str,
            extension: str,
            classifier: Optional[str] = None,
    ) -> Optional[Path]:
        """Locate a binary in the first repository that holds it."""
        suffix = f"-{classifier}" if classifier else ""
        file_name = f"{name}-{version}{suffix}.{extension}"
        for repository in self.repositories:
            candidate = self._module_dir(repository, group, name, version) / file_name
            if candidate.is_file():
                return candidate
        return None

    def load_pom(
            self,
            group: str,
            name: str,
            version: str,
            _chain: Tuple[Tuple[str, str, str], ...] = (),
    ) -> Optional[PomInfo]:
        """Load (and cache) the effective POM of a module version, ``None`` if absent.

        Parent POMs and imported BOMs are loaded from the same repositories.

        Raises:
            ValueError: If a POM exists but cannot be parsed, or its parent
                chain loops back on itself
        """
        key = (group, name, version)
        with self._lock:
            if key in self._pom_cache:
                return self._pom_cache[key]
        if key in _chain:
            cycle = " -> ".join(":".join(c) for c in _chain + (key,))
            raise ValueError(f"Cyclic POM inheritance: {cycle}")
        pom_path = self.find_file(group, name, version, "pom")
        info = parse_pom(
            pom_path, lambda g, n, v: self.load_pom(g, n, v, _chain + (key,))
        ) if pom_path else None
        with self._lock:
            self._pom_cache[key] = info
        return info

    def resolve(
            self,
            role: str,
            dependencies: Sequence[Dependency],
            exclusions: Sequence[ModuleId] = (),
    ) -> ResolutionResult:
        """Resolve a role's declarations to artifacts.

        Args:
            role: Name of the role being resolved, used in diagnostics
            dependencies: Effective declarations of the role
            exclusions: Modules dropped wherever they appear

        Returns:
            Resolved artifacts in discovery order and any failures
        """
        result = ResolutionResult()
        excluded = set(exclusions)

        requested = self._collect_requested_versions(dependencies, excluded, result)
        selected: Dict[ModuleId, str] = {}
        for module, versions in requested.items():
            # Equivalent spellings (1.0, 1.0.0) collapse to the first one requested
            by_key: Dict[Tuple[Tuple[int, int, str], ...], str] = {}
            for version in versions:
                by_key.setdefault(version_key(version), version)
            distinct = [by_key[key] for key in sorted(by_key)]
            if len(distinct) > 1 and self.fail_on_version_conflict:
                result.errors.append(ResolutionFailure(
                    str(module),
                    f"version conflict between {', '.join(distinct)} on role {role}",
                ))
            selected[module] = distinct[-1]

        if result.errors:
            return result

        seen: Set[Tuple[ModuleId, str, Optional[str]]] = set()
        expanded: Set[ModuleId] = set()
        queue: List[Dependency] = list(dependencies)
        while queue:
            dependency = queue.pop(0)
            module = dependency.module_id
            if module in excluded or module not in selected:
                continue
            version = selected[module]
            pom = self.load_pom(module.group, module.name, version)

            if dependency.extension:
                extension = dependency.extension
                artifact_type = dependency.extension
            else:
                packaging = pom.packaging if pom else "jar"
                if packaging == "pom":
                    extension = None
                    artifact_type = packaging
                else:
                    extension = packaging if packaging in ARCHIVE_PACKAGINGS else "jar"
                    artifact_type = packaging

            if extension is not None:
                key = (module, extension, dependency.classifier)
                if key not in seen:
                    seen.add(key)
                    path = self.find_file(
                        module.group, module.name, version, extension, dependency.classifier
                    )
                    if path is None:
                        result.errors.append(ResolutionFailure(
                            f"{module}:{version}",
                            f"artifact {module.name}-{version}.{extension} not found "
                            f"while resolving role {role}",
                        ))
                        continue
                    result.artifacts.append(ResolvedArtifact(
                        group=module.group,
                        name=module.name,
                        version=version,
                        type=artifact_type,
                        extension=extension,
                        file=path,
                        classifier=dependency.classifier,
                    ))

            if dependency.transitive and pom is not None and module not in expanded:
                expanded.add(module)
                queue.extend(self._transitive(pom))

        self._logger.debug(
            "Resolved role", role=role, artifacts=len(result.artifacts), errors=len(result.errors)
        )
        return result

    def _collect_requested_versions(
            self,
            dependencies: Sequence[Dependency],
            excluded: Set[ModuleId],
            result: ResolutionResult,
    ) -> Dict[ModuleId, List[str]]:
        requested: Dict[ModuleId, List[str]] = {}
        visited: Set[Tuple[ModuleId, str]] = set()
        queue: List[Dependency] = list(dependencies)
        while queue:
            dependency = queue.pop(0)
            module = dependency.module_id
            if module in excluded:
                continue
            if not dependency.version:
                result.errors.append(ResolutionFailure(str(module), "no version declared"))
                continue
            requested.setdefault(module, []).append(dependency.version)
            if (module, dependency.version) in visited:
                continue
            visited.add((module, dependency.version))

            pom, readable = self._safe_pom(module, dependency.version, result)
            if not readable:
                continue
            if pom is None:
                if not self._has_any_binary(module, dependency):
                    result.errors.append(ResolutionFailure(
                        f"{module}:{dependency.version}", "module not found in any repository"
                    ))
                continue
            if dependency.transitive:
                queue.extend(self._transitive(pom))
        return requested

    def _has_any_binary(self, module: ModuleId, dependency: Dependency) -> bool:
        extension = dependency.extension or "jar"
        return self.find_file(
            module.group, module.name, dependency.version or "", extension, dependency.classifier
        ) is not None

    def _safe_pom(
            self, module: ModuleId, version: str, result: ResolutionResult
    ) -> Tuple[Optional[PomInfo], bool]:
        """Load a POM, recording unreadable files as failures."""
        try:
            return self.load_pom(module.group, module.name, version), True
        except ValueError as e:
            failure = ResolutionFailure(f"{module}:{version}", str(e))
            if failure not in result.errors:
                result.errors.append(failure)
            return None, False

    @staticmethod
    def _transitive(pom: PomInfo) -> List[Dependency]:
        return [
            dependency
            for dependency, scope, optional in pom.dependencies
            if scope in TRANSITIVE_SCOPES and not optional
        ]
