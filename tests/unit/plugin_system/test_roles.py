"""Unit tests for the role graph."""

from __future__ import annotations

import pytest

from jpikit.plugin_system.artifacts import ModuleId
from jpikit.plugin_system.roles import RoleGraph, RoleName, default_role_graph
from jpikit.utils.exceptions import ConfigurationError


@pytest.fixture
def graph() -> RoleGraph:
    graph = RoleGraph()
    for name in ("a", "b", "c", "d"):
        graph.define_role(name)
    return graph


class TestRoleGraph:
    """Tests for the RoleGraph class."""

    def test_lookup_unknown_role(self, graph):
        """Test that looking up an undeclared role fails."""
        with pytest.raises(ConfigurationError, match="Unknown role: missing"):
            graph.get("missing")

    def test_duplicate_role(self, graph):
        with pytest.raises(ConfigurationError):
            graph.define_role("a")

    def test_two_role_cycle(self, graph):
        """Test that A extends B extends A is rejected when declared."""
        graph.declare_extends("a", "b")
        with pytest.raises(ConfigurationError, match="Cyclic role graph"):
            graph.declare_extends("b", "a")
        assert graph.targets_of("b") == []

    def test_longer_cycle(self, graph):
        graph.declare_extends("a", "b")
        graph.declare_extends("b", "c")
        with pytest.raises(ConfigurationError) as excinfo:
            graph.declare_extends("c", "a")
        assert "c -> a -> b -> c" in str(excinfo.value)

    def test_self_edge(self, graph):
        with pytest.raises(ConfigurationError):
            graph.declare_extends("a", "a")

    def test_duplicate_edge_is_ignored(self, graph):
        graph.declare_extends("a", "b")
        graph.declare_extends("a", "b")
        assert graph.targets_of("a") == ["b"]

    def test_hierarchy(self, graph):
        """Test that the hierarchy lists the role and every role feeding it."""
        graph.declare_extends("a", "c")
        graph.declare_extends("b", "c")
        graph.declare_extends("d", "a")
        assert graph.hierarchy("c") == ["c", "a", "b", "d"]
        assert graph.sources_of("c") == ["a", "b"]

    def test_hierarchy_diamond_lists_each_role_once(self, graph):
        graph.declare_extends("d", "a")
        graph.declare_extends("d", "b")
        graph.declare_extends("a", "c")
        graph.declare_extends("b", "c")
        assert graph.hierarchy("c") == ["c", "a", "b", "d"]

    def test_topological_order(self, graph):
        graph.declare_extends("c", "b")
        graph.declare_extends("b", "a")
        order = graph.topological_order()
        assert order.index("c") < order.index("b") < order.index("a")

    def test_frozen_graph_rejects_changes(self, graph):
        graph.freeze()
        with pytest.raises(ConfigurationError, match="frozen"):
            graph.declare_extends("a", "b")
        with pytest.raises(ConfigurationError):
            graph.exclude("a", "org.example", "thing")
        with pytest.raises(ConfigurationError):
            graph.define_role("e")

    def test_exclusions(self, graph):
        graph.exclude("a", "org.example", "thing")
        graph.exclude("a", "org.example", "thing")
        assert graph.get("a").exclusions == [ModuleId("org.example", "thing")]
        assert graph.get("a").excludes(ModuleId("org.example", "thing"))


class TestDefaultRoleGraph:
    """Tests for the fixed role set of a plugin project."""

    def test_all_roles_defined(self):
        graph = default_role_graph()
        for name in RoleName:
            assert name in graph

    def test_plugin_roles_feed_provided_compile(self):
        graph = default_role_graph()
        sources = graph.sources_of(RoleName.PROVIDED_COMPILE)
        assert sources == ["jenkins_core", "jenkins_plugins", "optional_jenkins_plugins"]

    def test_compile_classpath_sees_plugins(self):
        hierarchy = default_role_graph().hierarchy(RoleName.COMPILE_CLASSPATH)
        assert "jenkins_plugins" in hierarchy
        assert "optional_jenkins_plugins" in hierarchy
        assert "jenkins_test" not in hierarchy

    def test_test_plugins_exclusions(self):
        role = default_role_graph().get(RoleName.TEST_PLUGINS)
        assert ModuleId("org.jenkins-ci.modules", "sshd") in role.exclusions
        assert ModuleId("org.jenkins-ci.modules", "ssh-cli-auth") in role.exclusions

    def test_cycle_through_fixed_roles(self):
        """Test that closing a loop through the fixed roles is rejected."""
        graph = default_role_graph()
        with pytest.raises(ConfigurationError, match="Cyclic role graph"):
            graph.declare_extends(RoleName.COMPILE_CLASSPATH, RoleName.IMPLEMENTATION)
