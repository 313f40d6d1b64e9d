"""Builder for plugin archives.

This module contains the PluginBuilder class that runs the packaging pipeline:
freezing and resolving the dependency roles, deriving the manifest, packing
the library jar and assembling the container archive.
"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from jpikit.core.config_manager import PluginConfig
from jpikit.core.logging_manager import get_logger
from jpikit.plugin_system.artifacts import ResolvedArtifact
from jpikit.plugin_system.manifest import ArchiveSpec, ManifestAssembler
from jpikit.plugin_system.package import JarBuilder, PackageAssembler, PackageDescriptor
from jpikit.plugin_system.project import PluginProject
from jpikit.plugin_system.resolver import FileRepositoryResolver, Resolver
from jpikit.plugin_system.roles import RoleKey, RoleName
from jpikit.plugin_system.test_dependencies import generate_test_hpl, stage_test_dependencies
from jpikit.utils.exceptions import JpiError


@dataclass
class BuildResult:
    """Outputs of a packaging run.

    Attributes:
        archive: The container archive
        library_jar: The plugin's own jar
        manifest: Manifest attributes written to both archives
        fingerprint: Fingerprint of the manifest attributes
        bundled: Artifacts copied into the library directory
        injected_test: Name of the generated test, None when injection is disabled
    """

    archive: pathlib.Path
    library_jar: pathlib.Path
    manifest: Dict[str, str]
    fingerprint: str
    bundled: List[ResolvedArtifact] = field(default_factory=list)
    injected_test: Optional[str] = None


class PluginBuilder:
    """Builder for plugin archives.

    Attributes:
        config: Plugin configuration
        project: Plugin project holding the dependency declarations
        logger: Structured logger
    """

    def __init__(
            self, config: PluginConfig, resolver: Optional[Resolver] = None
    ) -> None:
        """Initialize the builder.

        Args:
            config: Plugin configuration
            resolver: Dependency resolver, by default one reading the configured
                local repositories
        """
        self.config = config
        self.logger = get_logger("plugin_builder")
        if resolver is None:
            resolver = FileRepositoryResolver(
                config.effective_repositories(),
                fail_on_version_conflict=config.fail_on_version_conflict,
            )
        self.project = PluginProject(config, resolver)
        self.manifest_assembler = ManifestAssembler(config)
        self.jar_builder = JarBuilder()
        self.package_assembler = PackageAssembler()

    @property
    def output_dir(self) -> pathlib.Path:
        return self.config.resolve_path(self.config.output_dir)

    def classpath(self, role: RoleKey) -> List[pathlib.Path]:
        """Freeze the project and return the jar files of a role."""
        self.project.freeze()
        return [
            artifact.file
            for artifact in self.project.resolve(role)
            if artifact.extension == "jar"
        ]

    def manifest(self) -> Dict[str, str]:
        self.project.freeze()
        return dict(self.manifest_assembler.assemble(self.project))

    def stage_test_dependencies(self, target_dir: pathlib.Path) -> List[str]:
        """Stage the plugins and the descriptor used by the test harness."""
        self.project.freeze()
        names = stage_test_dependencies(self.project, target_dir)
        generate_test_hpl(
            self.manifest(),
            self.config.resolve_path(self.config.classes_dir),
            self.project.runtime_classpath(),
            target_dir,
        )
        return names

    def build(self) -> BuildResult:
        """Run the packaging pipeline.

        Returns:
            The written archives and the data they were built from

        Raises:
            ConfigurationError: If metadata is missing or declarations are invalid
            ResolutionError: If a role cannot be resolved
            AssemblyError: If an archive cannot be written
        """
        config = self.config
        self.logger.info(
            "Starting build",
            short_name=config.short_name,
            version=config.version,
            extension=config.file_extension.value,
        )
        try:
            self.project.freeze_and_resolve()

            attributes = self.manifest_assembler.assemble(self.project)
            jar_spec = ArchiveSpec("jar")
            package_spec = ArchiveSpec(config.file_extension.value)
            fingerprint = self.manifest_assembler.apply(attributes, [jar_spec, package_spec])

            descriptor = PackageDescriptor.from_config(config, self.project.provided_modules())
            library_jar = self.jar_builder.build(
                config.resolve_path(config.classes_dir),
                jar_spec.manifest,
                self.output_dir / descriptor.library_jar_name,
            )
            runtime = self.project.resolve(RoleName.RUNTIME_CLASSPATH)
            archive = self.package_assembler.assemble(
                descriptor,
                library_jar,
                package_spec.manifest,
                runtime,
                config.resolve_path(config.license_dir) if config.license_dir else None,
                self.output_dir,
            )
        except JpiError as e:
            self.logger.error("Build failed", error=str(e), details=e.details)
            raise

        injected_test = None if config.disabled_test_injection else config.injected_test_name
        self.logger.info(
            "Build completed",
            archive=str(archive),
            configure_publishing=config.configure_publishing,
            injected_test=injected_test,
        )
        return BuildResult(
            archive=archive,
            library_jar=library_jar,
            manifest=dict(attributes),
            fingerprint=fingerprint,
            bundled=self.package_assembler.bundled(descriptor, runtime),
            injected_test=injected_test,
        )
