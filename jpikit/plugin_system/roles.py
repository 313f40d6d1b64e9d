"""Dependency roles and the edges between them.

A role is a named dependency bucket. Roles are linked by *extends* edges: when
``A`` extends into ``B``, everything declared on ``A`` is also visible wherever
``B`` is resolved. The graph is small and fixed, so it is stored as plain
adjacency lists keyed by role name.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Union

from jpikit.plugin_system.artifacts import ModuleId
from jpikit.utils.exceptions import ConfigurationError


class RoleName(str, enum.Enum):
    """Identifiers of the roles known to a plugin project."""

    # Standard classpath roles
    IMPLEMENTATION = "implementation"
    RUNTIME_ONLY = "runtime_only"
    PROVIDED_COMPILE = "provided_compile"
    PROVIDED_RUNTIME = "provided_runtime"
    COMPILE_CLASSPATH = "compile_classpath"
    RUNTIME_CLASSPATH = "runtime_classpath"
    TEST_IMPLEMENTATION = "test_implementation"

    # Host platform roles
    CORE = "jenkins_core"
    PLUGINS = "jenkins_plugins"
    OPTIONAL_PLUGINS = "optional_jenkins_plugins"
    SERVER_PLUGINS = "jenkins_server"
    TEST_PLUGINS = "jenkins_test"
    WAR = "jenkins_war"
    PLUGIN_RESOURCES = "plugin_resources"

    def __str__(self) -> str:
        return self.value


RoleKey = Union[RoleName, str]


def role_key(name: RoleKey) -> str:
    return name.value if isinstance(name, RoleName) else str(name)


@dataclass
class Role:
    """A named dependency bucket.

    Attributes:
        name: Unique role name
        visible: Whether consumers of the project see the role
        description: Human readable purpose
        exclusions: Modules always dropped when resolving through the role
    """

    name: str
    visible: bool = False
    description: str = ""
    exclusions: List[ModuleId] = field(default_factory=list)

    def excludes(self, module: ModuleId) -> bool:
        return module in self.exclusions


class RoleGraph:
    """Directed graph of roles and their *extends* edges."""

    def __init__(self) -> None:
        self._roles: Dict[str, Role] = {}
        self._edges: Dict[str, List[str]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self, what: str) -> None:
        if self._frozen:
            raise ConfigurationError(
                f"Cannot {what}: the role graph is frozen after resolution started"
            )

    def define_role(self, name: RoleKey, visible: bool = False, description: str = "") -> Role:
        """Create a role.

        Raises:
            ConfigurationError: If the graph is frozen or the role already exists
        """
        key = role_key(name)
        self._check_mutable(f"define role {key}")
        if key in self._roles:
            raise ConfigurationError(f"Role already defined: {key}", config_key=key)
        role = Role(name=key, visible=visible, description=description)
        self._roles[key] = role
        self._edges[key] = []
        return role

    def get(self, name: RoleKey) -> Role:
        """Look up a role by name.

        Raises:
            ConfigurationError: If no role of that name was defined
        """
        key = role_key(name)
        try:
            return self._roles[key]
        except KeyError:
            raise ConfigurationError(f"Unknown role: {key}", config_key=key) from None

    def __contains__(self, name: object) -> bool:
        if isinstance(name, (RoleName, str)):
            return role_key(name) in self._roles
        return False

    @property
    def roles(self) -> List[Role]:
        """Roles in definition order."""
        return list(self._roles.values())

    def declare_extends(self, role: RoleKey, target: RoleKey) -> None:
        """Record that ``role``'s dependencies are re-exposed through ``target``.

        Raises:
            ConfigurationError: If either role is unknown, the graph is frozen,
                or the edge would close a cycle
        """
        source = self.get(role).name
        destination = self.get(target).name
        self._check_mutable(f"declare {source} -> {destination}")

        if destination in self._edges[source]:
            return

        path = self._find_path(destination, source)
        if path is not None:
            cycle = " -> ".join([source] + path)
            raise ConfigurationError(
                f"Cyclic role graph: {cycle}", config_key=source
            )
        self._edges[source].append(destination)

    def exclude(self, role: RoleKey, group: str, module: str) -> None:
        """Always drop ``group:module`` when resolving through ``role``."""
        target = self.get(role)
        self._check_mutable(f"add exclusion to {target.name}")
        module_id = ModuleId(group, module)
        if module_id not in target.exclusions:
            target.exclusions.append(module_id)

    def targets_of(self, role: RoleKey) -> List[str]:
        """Roles that ``role`` extends into directly."""
        return list(self._edges[self.get(role).name])

    def sources_of(self, role: RoleKey) -> List[str]:
        """Roles that extend directly into ``role``, in definition order."""
        key = self.get(role).name
        return [name for name, targets in self._edges.items() if key in targets]

    def hierarchy(self, role: RoleKey) -> List[str]:
        """The role followed by every role that feeds it, transitively.

        Order is breadth first, sources in definition order, without duplicates.
        """
        ordered: List[str] = []
        seen: Set[str] = set()
        pending = deque([self.get(role).name])
        while pending:
            current = pending.popleft()
            if current in seen:
                continue
            seen.add(current)
            ordered.append(current)
            pending.extend(self.sources_of(current))
        return ordered

    def topological_order(self, roles: Optional[Iterable[RoleKey]] = None) -> List[str]:
        """Return roles so that every source comes before the roles it extends into."""
        resolved: List[str] = []
        names = [self.get(r).name for r in roles] if roles is not None else list(self._roles)
        for name in names:
            self._visit(name, resolved, [])
        return resolved

    def _visit(self, name: str, resolved: List[str], path: List[str]) -> None:
        if name in resolved:
            return
        if name in path:
            # Unreachable while declare_extends rejects cycles.
            raise ConfigurationError(
                f"Cyclic role graph: {' -> '.join(path + [name])}", config_key=name
            )
        for source in self.sources_of(name):
            self._visit(source, resolved, path + [name])
        resolved.append(name)

    def _find_path(self, start: str, goal: str) -> Optional[List[str]]:
        """Depth-first search along extends edges; returns the node path or None."""
        stack = [(start, [start])]
        seen = set()
        while stack:
            node, path = stack.pop()
            if node == goal:
                return path
            if node in seen:
                continue
            seen.add(node)
            for nxt in self._edges.get(node, []):
                stack.append((nxt, path + [nxt]))
        return None


def default_role_graph() -> RoleGraph:
    """Build the fixed role graph of a host extension project."""
    graph = RoleGraph()

    graph.define_role(RoleName.IMPLEMENTATION, visible=True,
                      description="Libraries compiled against and bundled")
    graph.define_role(RoleName.RUNTIME_ONLY, visible=True,
                      description="Libraries bundled but not compiled against")
    graph.define_role(RoleName.PROVIDED_COMPILE, visible=True,
                      description="Compiled against, supplied by the host at runtime")
    graph.define_role(RoleName.PROVIDED_RUNTIME, visible=True,
                      description="Supplied by the host at runtime, never bundled")
    graph.define_role(RoleName.COMPILE_CLASSPATH, description="Compile classpath")
    graph.define_role(RoleName.RUNTIME_CLASSPATH, description="Runtime classpath")
    graph.define_role(RoleName.TEST_IMPLEMENTATION, visible=True,
                      description="Test compile and runtime classpath")

    graph.define_role(RoleName.CORE,
                      description="Jenkins core that your plugin is built against")
    graph.define_role(RoleName.PLUGINS,
                      description="Jenkins plugins which your plugin is built against")
    graph.define_role(RoleName.OPTIONAL_PLUGINS,
                      description="Optional Jenkins plugins dependencies which your plugin is built against")
    graph.define_role(RoleName.SERVER_PLUGINS,
                      description="Jenkins plugins which will be installed by the server task")
    graph.define_role(RoleName.TEST_PLUGINS,
                      description="Jenkins plugin test dependencies.")
    graph.define_role(RoleName.WAR,
                      description="Jenkins war that corresponds to the Jenkins core")
    graph.define_role(RoleName.PLUGIN_RESOURCES,
                      description="Plugins staged for the test harness")

    graph.exclude(RoleName.TEST_PLUGINS, "org.jenkins-ci.modules", "ssh-cli-auth")
    graph.exclude(RoleName.TEST_PLUGINS, "org.jenkins-ci.modules", "sshd")

    graph.declare_extends(RoleName.IMPLEMENTATION, RoleName.COMPILE_CLASSPATH)
    graph.declare_extends(RoleName.IMPLEMENTATION, RoleName.RUNTIME_CLASSPATH)
    graph.declare_extends(RoleName.IMPLEMENTATION, RoleName.TEST_IMPLEMENTATION)
    graph.declare_extends(RoleName.RUNTIME_ONLY, RoleName.RUNTIME_CLASSPATH)
    graph.declare_extends(RoleName.PROVIDED_COMPILE, RoleName.PROVIDED_RUNTIME)
    graph.declare_extends(RoleName.PROVIDED_COMPILE, RoleName.COMPILE_CLASSPATH)
    graph.declare_extends(RoleName.PROVIDED_COMPILE, RoleName.TEST_IMPLEMENTATION)
    graph.declare_extends(RoleName.PROVIDED_RUNTIME, RoleName.RUNTIME_CLASSPATH)

    graph.declare_extends(RoleName.CORE, RoleName.PROVIDED_COMPILE)
    graph.declare_extends(RoleName.PLUGINS, RoleName.PROVIDED_COMPILE)
    graph.declare_extends(RoleName.OPTIONAL_PLUGINS, RoleName.PROVIDED_COMPILE)
    graph.declare_extends(RoleName.TEST_PLUGINS, RoleName.TEST_IMPLEMENTATION)

    return graph
