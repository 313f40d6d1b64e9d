"""The plugin project: roles, declarations and their resolution.

A :class:`PluginProject` is built once per packaging run and goes through two
explicit phases:

1. *declaring*: dependencies, exclusions, extends edges and rewrites are
   collected;
2. *frozen*: after :meth:`PluginProject.freeze` no declaration is accepted and
   roles may be resolved. Reading a role first runs every deferred rewrite that
   feeds it, in role graph order.
"""

from __future__ import annotations

import enum
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from jpikit.core.config_manager import PluginConfig
from jpikit.core.logging_manager import get_logger
from jpikit.plugin_system.artifacts import Dependency, ModuleId, ResolvedArtifact
from jpikit.plugin_system.resolver import Resolver
from jpikit.plugin_system.rewriter import DEFAULT_REWRITES, RewriteRule, ScopeRewriter
from jpikit.plugin_system.roles import RoleGraph, RoleKey, RoleName, default_role_graph
from jpikit.utils.exceptions import ConfigurationError, ResolutionError

# Roles whose declarations are staged for the test harness.
PLUGIN_RESOURCE_SOURCES = (
    RoleName.PLUGINS,
    RoleName.OPTIONAL_PLUGINS,
    RoleName.SERVER_PLUGINS,
    RoleName.TEST_PLUGINS,
)

# Roles resolved by a full packaging run.
CLASSPATH_ROLES = (
    RoleName.COMPILE_CLASSPATH,
    RoleName.PROVIDED_RUNTIME,
    RoleName.RUNTIME_CLASSPATH,
    RoleName.TEST_IMPLEMENTATION,
)

_CacheKey = Tuple[Tuple[Dependency, ...], Tuple[ModuleId, ...]]


class ProjectPhase(str, enum.Enum):
    """Lifecycle phase of a plugin project."""

    DECLARING = "declaring"
    FROZEN = "frozen"


class PluginProject:
    """Dependency declarations of a plugin and their resolution.

    Attributes:
        config: Project configuration
        resolver: Dependency resolver collaborator
        graph: Role graph
        rewriter: Scope rewriter holding the deferred rewrites
    """

    def __init__(
            self,
            config: PluginConfig,
            resolver: Resolver,
            graph: Optional[RoleGraph] = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.graph = graph if graph is not None else default_role_graph()
        self.rewriter = ScopeRewriter(self.graph, max_workers=config.max_workers)
        self._logger = get_logger("plugin_project")
        self._phase = ProjectPhase.DECLARING
        self._declared: Dict[str, List[Dependency]] = {role.name: [] for role in self.graph.roles}
        self._cache: Dict[str, Tuple[_CacheKey, List[ResolvedArtifact]]] = {}
        self._role_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        for source, target in DEFAULT_REWRITES:
            if source in self.graph and target in self.graph:
                self.rewriter.rewrite(source, target)

        for role, notations in config.dependencies.items():
            for notation in notations:
                self.add_dependency(role, notation)

    @property
    def phase(self) -> ProjectPhase:
        return self._phase

    @property
    def frozen(self) -> bool:
        return self._phase is ProjectPhase.FROZEN

    def _check_declaring(self, what: str) -> None:
        if self.frozen:
            raise ConfigurationError(
                f"Cannot {what}: dependency declarations are frozen once resolution starts"
            )

    # Declaration phase

    def add_dependency(
            self,
            role: RoleKey,
            notation: Union[str, Dependency],
            reason: Optional[str] = None,
    ) -> Dependency:
        """Declare a dependency on a role.

        Args:
            role: Role receiving the dependency
            notation: ``group:name:version[:classifier][@ext]`` or a Dependency
            reason: Optional explanation recorded with the declaration

        Raises:
            ConfigurationError: If the project is frozen, the role is unknown or
                the notation is invalid
        """
        key = self.graph.get(role).name
        self._check_declaring(f"add {notation} to {key}")
        dependency = notation if isinstance(notation, Dependency) else Dependency.parse(notation, reason)
        declared = self._declared[key]
        if dependency not in declared:
            declared.append(dependency)
        return dependency

    def exclude(self, role: RoleKey, group: str, module: str) -> None:
        self._check_declaring(f"exclude {group}:{module}")
        self.graph.exclude(role, group, module)

    def declare_extends(self, role: RoleKey, target: RoleKey) -> None:
        self._check_declaring(f"declare {role} -> {target}")
        self.graph.declare_extends(role, target)

    def rewrite(self, source: RoleKey, target: RoleKey) -> RewriteRule:
        self._check_declaring(f"rewrite {source} -> {target}")
        return self.rewriter.rewrite(source, target)

    def declared(self, role: RoleKey, include_rewritten: bool = True) -> List[Dependency]:
        """Dependencies declared directly on a role."""
        key = self.graph.get(role).name
        declared = list(self._declared[key])
        if include_rewritten:
            declared.extend(r.to_dependency() for r in self.rewriter.rewritten(key))
        return declared

    # Phase transition

    def freeze(self) -> None:
        """Close the declaration phase.

        Validates the required metadata, stages the plugin coordinates on the
        plugin resources role and freezes the role graph. Calling it again is a
        no-op.

        Raises:
            ConfigurationError: If the short name or version is missing
        """
        if self.frozen:
            return
        self.config.require_metadata()

        if RoleName.PLUGIN_RESOURCES in self.graph:
            for role in PLUGIN_RESOURCE_SOURCES:
                if role not in self.graph:
                    continue
                for dependency in self._declared[self.graph.get(role).name]:
                    if dependency.version:
                        self.add_dependency(
                            RoleName.PLUGIN_RESOURCES,
                            Dependency(dependency.group, dependency.name, dependency.version),
                        )

        self.graph.freeze()
        self._phase = ProjectPhase.FROZEN
        self._logger.info(
            "Froze dependency declarations",
            short_name=self.config.short_name,
            rules=[str(rule) for rule in self.rewriter.rules],
        )

    def freeze_and_resolve(
            self, roles: Optional[Sequence[RoleKey]] = None
    ) -> Dict[str, List[ResolvedArtifact]]:
        """Freeze the project, run all deferred rewrites and resolve roles.

        Rewrites run in role graph order so a rule whose source is fed by
        another rule's target sees the completed target.

        Args:
            roles: Roles to resolve, the classpath roles by default

        Returns:
            Resolved artifacts keyed by role name
        """
        self.freeze()
        for role in self.graph.topological_order():
            self._run_rewrites(role)
        targets = roles if roles is not None else [r for r in CLASSPATH_ROLES if r in self.graph]
        return {self.graph.get(role).name: self.resolve(role) for role in targets}

    # Resolution phase

    def effective_dependencies(self, role: RoleKey) -> List[Dependency]:
        """Declarations visible through a role: its own plus every feeding role's."""
        seen: Set[Dependency] = set()
        result: List[Dependency] = []
        for name in self.graph.hierarchy(role):
            for dependency in self.declared(name):
                if dependency not in seen:
                    seen.add(dependency)
                    result.append(dependency)
        return result

    def exclusions(self, role: RoleKey) -> List[ModuleId]:
        result: List[ModuleId] = []
        for name in self.graph.hierarchy(role):
            for module in self.graph.get(name).exclusions:
                if module not in result:
                    result.append(module)
        return result

    def _role_lock(self, role: str) -> threading.Lock:
        with self._locks_guard:
            if role not in self._role_locks:
                self._role_locks[role] = threading.Lock()
            return self._role_locks[role]

    def _run_rewrites(self, role: str) -> None:
        """Run pending rewrites that target ``role`` or any role feeding it."""
        hierarchy = self.graph.hierarchy(role)
        for name in self.graph.topological_order(hierarchy):
            if self.rewriter.pending_for(name):
                self.rewriter.apply(name, self.resolve)

    def resolve(self, role: RoleKey) -> List[ResolvedArtifact]:
        """Resolve a role, running its deferred rewrites first.

        Results are cached on the role's effective declarations, so a role is
        resolved again only when rewrites changed what it sees.

        Raises:
            ConfigurationError: If the project is still declaring
            ResolutionError: If the resolver reports any failure
        """
        key = self.graph.get(role).name
        if not self.frozen:
            raise ConfigurationError(
                f"Cannot resolve {key} before the project is frozen", config_key=key
            )

        self._run_rewrites(key)

        with self._role_lock(key):
            dependencies = self.effective_dependencies(key)
            exclusions = self.exclusions(key)
            cache_key: _CacheKey = (tuple(dependencies), tuple(exclusions))
            cached = self._cache.get(key)
            if cached is not None and cached[0] == cache_key:
                return list(cached[1])

            result = self.resolver.resolve(key, dependencies, exclusions)
            if result.errors:
                failure = result.errors[0]
                self._logger.error(
                    "Resolution failed",
                    role=key,
                    coordinate=failure.module,
                    failures=[str(error) for error in result.errors],
                )
                raise ResolutionError(
                    f"Could not resolve {failure.module} for role {key}: {failure.message}",
                    module=failure.module,
                    role=key,
                    details={"failures": [str(error) for error in result.errors]},
                )

            self._cache[key] = (cache_key, list(result.artifacts))
            self._logger.debug("Resolved role", role=key, artifacts=len(result.artifacts))
            return list(result.artifacts)

    # Classpath views

    def _jar_files(self, role: RoleKey) -> List[Path]:
        files: List[Path] = []
        for artifact in self.resolve(role):
            if artifact.extension == "jar" and artifact.file not in files:
                files.append(artifact.file)
        return files

    def compile_classpath(self) -> List[Path]:
        return self._jar_files(RoleName.COMPILE_CLASSPATH)

    def runtime_classpath(self) -> List[Path]:
        return self._jar_files(RoleName.RUNTIME_CLASSPATH)

    def test_classpath(self) -> List[Path]:
        return self._jar_files(RoleName.TEST_IMPLEMENTATION)

    def provided_modules(self) -> Set[ModuleId]:
        """Modules supplied by the host at runtime, never bundled."""
        return {artifact.module_id for artifact in self.resolve(RoleName.PROVIDED_RUNTIME)}

    def bundled_artifacts(self) -> List[ResolvedArtifact]:
        """Runtime artifacts that belong in the archive's library directory."""
        provided = self.provided_modules()
        return [
            artifact
            for artifact in self.resolve(RoleName.RUNTIME_CLASSPATH)
            if artifact.module_id not in provided
        ]
