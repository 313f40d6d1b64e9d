"""Plugin archive creation.

This module writes the two archives of a plugin build: the library jar holding
the plugin's own classes, and the container archive (``.hpi`` or ``.jpi``) that
nests the library jar next to the bundled runtime libraries.

Archives are reproducible. Entries are written in sorted order with a fixed
timestamp and fixed permissions, so assembling unchanged inputs twice yields
byte-identical files. Archives are written to a temporary file next to the
destination and moved into place only once complete.
"""

from __future__ import annotations

import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Set, Union

from jpikit.core.config_manager import FileExtension, PluginConfig
from jpikit.core.logging_manager import get_logger
from jpikit.plugin_system.artifacts import ModuleId, ResolvedArtifact
from jpikit.plugin_system.manifest import MANIFEST_PATH, write_manifest
from jpikit.utils.exceptions import AssemblyError

# Earliest timestamp that survives a round trip through DOS dates in every zip tool.
FIXED_TIMESTAMP = (1980, 2, 1, 0, 0, 0)
FILE_PERMISSIONS = 0o644

LIB_DIR = "WEB-INF/lib"
METADATA_DIR = "WEB-INF"


class ArchiveWriter(Protocol):
    """Capability interface for adding entries to an archive."""

    def write_bytes(self, name: str, data: bytes) -> None:
        ...

    def write_file(self, name: str, path: Path) -> None:
        ...


class ZipArchiveWriter:
    """Zip-backed archive writer with reproducible output.

    Entries are buffered and written on :meth:`close`: the manifest first, then
    every other entry sorted by name.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._entries: Dict[str, Union[bytes, Path]] = {}
        self._closed = False

    def __enter__(self) -> ZipArchiveWriter:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if exc_type is None:
            self.close()

    @property
    def names(self) -> List[str]:
        return sorted(self._entries)

    def _add(self, name: str, content: Union[bytes, Path]) -> None:
        name = name.replace(os.sep, "/").lstrip("/")
        if name in self._entries:
            raise AssemblyError(f"Duplicate archive entry: {name}", path=str(self.path))
        self._entries[name] = content

    def write_bytes(self, name: str, data: bytes) -> None:
        self._add(name, data)

    def write_file(self, name: str, path: Path) -> None:
        self._add(name, Path(path))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        ordered = sorted(self._entries, key=lambda n: (n != MANIFEST_PATH, n))
        with zipfile.ZipFile(self.path, "w", zipfile.ZIP_DEFLATED) as zf:
            for name in ordered:
                content = self._entries[name]
                data = content if isinstance(content, bytes) else content.read_bytes()
                zf.writestr(_zip_info(name), data)


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=FIXED_TIMESTAMP)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = 3
    info.external_attr = (0o100000 | FILE_PERMISSIONS) << 16
    return info


WriterFactory = Callable[[Path], ZipArchiveWriter]


def write_archive(
        output: Union[str, Path],
        populate: Callable[[ArchiveWriter], None],
        writer_factory: WriterFactory = ZipArchiveWriter,
) -> Path:
    """Write an archive atomically.

    ``populate`` receives the writer and adds the entries. The archive is
    written to a temporary file in the destination directory and renamed over
    ``output`` only after it is complete.

    Raises:
        AssemblyError: If any entry or the archive itself cannot be written
    """
    output = Path(output)
    logger = get_logger("archive_writer")
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{output.name}.", suffix=".tmp", dir=str(output.parent)
        )
        os.close(fd)
    except OSError as e:
        logger.error("Cannot create archive", path=str(output), error=str(e))
        raise AssemblyError(f"Cannot create archive {output}: {e}", path=str(output)) from e

    temp_path = Path(temp_name)
    try:
        writer = writer_factory(temp_path)
        populate(writer)
        writer.close()
        os.replace(temp_path, output)
    except Exception as e:
        temp_path.unlink(missing_ok=True)
        logger.error("Failed to write archive", path=str(output), error=str(e))
        if isinstance(e, AssemblyError):
            raise
        raise AssemblyError(f"Failed to write archive {output}: {e}", path=str(output)) from e
    return output


def _tree_files(root: Path) -> List[Path]:
    return sorted((p for p in root.rglob("*") if p.is_file()), key=lambda p: p.as_posix())


@dataclass
class PackageDescriptor:
    """Name and content rules of the container archive.

    Attributes:
        short_name: Short identifier of the plugin
        project_name: Project identifier, names the nested library jar
        version: Plugin version
        extension: Container extension
        excluded: Modules supplied by the host, never bundled
    """

    short_name: str
    project_name: str
    version: str
    extension: FileExtension = FileExtension.HPI
    excluded: Set[ModuleId] = field(default_factory=set)

    @classmethod
    def from_config(
            cls, config: PluginConfig, excluded: Iterable[ModuleId] = ()
    ) -> PackageDescriptor:
        config.require_metadata()
        return cls(
            short_name=config.short_name,
            project_name=config.project_name or config.short_name,
            version=config.version,
            extension=config.file_extension,
            excluded=set(excluded),
        )

    @property
    def archive_name(self) -> str:
        return f"{self.short_name}.{self.extension.value}"

    @property
    def library_jar_name(self) -> str:
        """File name of the nested jar under ``WEB-INF/lib``.

        The jar is named after the project and version, as in a regular war
        layout, rather than after the short name.
        """
        return f"{self.project_name}-{self.version}.jar"


class JarBuilder:
    """Packs compiled classes and resources into the plugin's library jar."""

    def __init__(self, writer_factory: WriterFactory = ZipArchiveWriter) -> None:
        self.writer_factory = writer_factory
        self._logger = get_logger("jar_builder")

    def build(
            self,
            classes_dir: Optional[Path],
            manifest: Mapping[str, str],
            output: Union[str, Path],
    ) -> Path:
        """Write the library jar.

        A manifest found in ``classes_dir`` is replaced by ``manifest``. A
        missing classes directory yields a jar holding only the manifest.
        """
        files = _tree_files(classes_dir) if classes_dir and classes_dir.is_dir() else []

        def populate(writer: ArchiveWriter) -> None:
            writer.write_bytes(MANIFEST_PATH, write_manifest(manifest))
            for path in files:
                name = path.relative_to(classes_dir).as_posix()
                if name != MANIFEST_PATH:
                    writer.write_file(name, path)

        jar = write_archive(output, populate, self.writer_factory)
        self._logger.info("Library jar written", path=str(jar), entries=len(files))
        return jar


class PackageAssembler:
    """Assembles the container archive of a plugin."""

    def __init__(self, writer_factory: WriterFactory = ZipArchiveWriter) -> None:
        self.writer_factory = writer_factory
        self._logger = get_logger("package_assembler")

    def bundled(
            self, descriptor: PackageDescriptor, runtime_artifacts: Iterable[ResolvedArtifact]
    ) -> List[ResolvedArtifact]:
        """Runtime artifacts to copy into the library directory.

        Artifacts of excluded modules are dropped and the rest deduplicated by
        file name, keeping the first occurrence.
        """
        bundled: List[ResolvedArtifact] = []
        names: Set[str] = {descriptor.library_jar_name}
        for artifact in runtime_artifacts:
            if artifact.module_id in descriptor.excluded:
                continue
            if artifact.file_name in names:
                continue
            names.add(artifact.file_name)
            bundled.append(artifact)
        return bundled

    def populate(
            self,
            writer: ArchiveWriter,
            descriptor: PackageDescriptor,
            compiled_jar: Path,
            manifest: Mapping[str, str],
            runtime_artifacts: Iterable[ResolvedArtifact],
            license_dir: Optional[Path] = None,
    ) -> None:
        """Add every container entry to ``writer``.

        Raises:
            AssemblyError: If the library jar or the license directory is missing
        """
        if not compiled_jar.is_file():
            raise AssemblyError(f"Library jar not found: {compiled_jar}", path=str(compiled_jar))
        if license_dir is not None and not license_dir.is_dir():
            raise AssemblyError(f"License directory not found: {license_dir}", path=str(license_dir))

        writer.write_bytes(MANIFEST_PATH, write_manifest(manifest))
        writer.write_file(f"{LIB_DIR}/{descriptor.library_jar_name}", compiled_jar)
        for artifact in self.bundled(descriptor, runtime_artifacts):
            self._logger.debug(
                "Bundling library", coordinate=artifact.coordinate, file=artifact.file_name
            )
            writer.write_file(f"{LIB_DIR}/{artifact.file_name}", artifact.file)
        if license_dir is not None:
            for path in _tree_files(license_dir):
                writer.write_file(f"{METADATA_DIR}/{path.relative_to(license_dir).as_posix()}", path)

    def assemble(
            self,
            descriptor: PackageDescriptor,
            compiled_jar: Union[str, Path],
            manifest: Mapping[str, str],
            runtime_artifacts: Iterable[ResolvedArtifact],
            license_dir: Optional[Union[str, Path]] = None,
            output_dir: Union[str, Path] = "build/libs",
    ) -> Path:
        """Write ``<short_name>.<extension>`` into ``output_dir``.

        Args:
            descriptor: Archive name and exclusion rules
            compiled_jar: The plugin's library jar
            manifest: Merged manifest attributes
            runtime_artifacts: Resolved runtime classpath
            license_dir: Generated license report directory
            output_dir: Destination directory

        Returns:
            Path of the written archive

        Raises:
            AssemblyError: If the archive cannot be written; nothing is left at
                the destination path in that case
        """
        artifacts = list(runtime_artifacts)
        output = Path(output_dir) / descriptor.archive_name

        def populate(writer: ArchiveWriter) -> None:
            self.populate(
                writer,
                descriptor,
                Path(compiled_jar),
                manifest,
                artifacts,
                Path(license_dir) if license_dir is not None else None,
            )

        archive = write_archive(output, populate, self.writer_factory)
        self._logger.info(
            "Plugin archive written",
            path=str(archive),
            bundled=len(self.bundled(descriptor, artifacts)),
        )
        return archive
