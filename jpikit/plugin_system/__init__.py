"""Plugin packaging engine for jpikit.

This package resolves the dependency roles of a host extension project and
assembles its archive.

Modules:
    artifacts: Coordinates, resolved artifacts and the artifact classifier
    roles: Role graph and the fixed role set of a plugin project
    resolver: Resolver interface and the local repository resolver
    rewriter: Deferred rewriting of plugins into compile-only jars
    project: Declarations, freezing and resolution of a plugin project
    manifest: Manifest attributes and the JAR manifest format
    package: Library jar and container archive assembly
    test_dependencies: Files staged for the plugin test harness
"""

from __future__ import annotations

from jpikit.plugin_system.artifacts import (
    ArtifactKind,
    Dependency,
    ModuleId,
    ResolvedArtifact,
    RewrittenDependency,
    classify,
)
from jpikit.plugin_system.manifest import ArchiveSpec, ManifestAssembler, read_manifest, write_manifest
from jpikit.plugin_system.package import (
    ArchiveWriter,
    JarBuilder,
    PackageAssembler,
    PackageDescriptor,
    ZipArchiveWriter,
)
from jpikit.plugin_system.project import PluginProject, ProjectPhase
from jpikit.plugin_system.resolver import FileRepositoryResolver, ResolutionResult, Resolver
from jpikit.plugin_system.rewriter import ScopeRewriter
from jpikit.plugin_system.roles import RoleGraph, RoleName, default_role_graph
from jpikit.plugin_system.test_dependencies import generate_test_hpl, stage_test_dependencies

__all__ = [
    "ArchiveSpec",
    "ArchiveWriter",
    "ArtifactKind",
    "Dependency",
    "FileRepositoryResolver",
    "JarBuilder",
    "ManifestAssembler",
    "ModuleId",
    "PackageAssembler",
    "PackageDescriptor",
    "PluginProject",
    "ProjectPhase",
    "ResolutionResult",
    "ResolvedArtifact",
    "Resolver",
    "RewrittenDependency",
    "RoleGraph",
    "RoleName",
    "ScopeRewriter",
    "ZipArchiveWriter",
    "classify",
    "default_role_graph",
    "generate_test_hpl",
    "read_manifest",
    "stage_test_dependencies",
    "write_manifest",
]
