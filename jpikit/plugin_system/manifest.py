"""Manifest attributes of the plugin archives.

The :class:`ManifestAssembler` derives the attribute map once from the project
metadata and merges it into every archive that carries it. The attribute map
is also recorded as a build input with a fingerprint, so a cached build can
tell that an archive is stale when only the metadata changed.
"""

from __future__ import annotations

import hashlib
import json
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from jpikit.__version__ import __version__
from jpikit.core.config_manager import PluginConfig
from jpikit.core.logging_manager import get_logger
from jpikit.plugin_system.roles import RoleName
from jpikit.utils.exceptions import ConfigurationError

MANIFEST_PATH = "META-INF/MANIFEST.MF"
MANIFEST_INPUT = "manifest"
FINGERPRINT_INPUT = "manifest.fingerprint"

# Maximum line length in bytes of a JAR manifest, line break excluded.
MAX_LINE_BYTES = 72


@dataclass
class ArchiveSpec:
    """An archive whose manifest receives the plugin attributes.

    Attributes:
        name: Archive identifier, e.g. ``jar`` or ``hpi``
        manifest: Manifest attributes, possibly set by other collaborators
        inputs: Recorded build inputs of the archive
    """

    name: str
    manifest: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    inputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def fingerprint(self) -> Optional[str]:
        return self.inputs.get(FINGERPRINT_INPUT)


def fingerprint(attributes: Mapping[str, str]) -> str:
    """SHA-256 of the ordered attribute map."""
    payload = json.dumps(list(attributes.items()), ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ManifestAssembler:
    """Builds the plugin manifest attributes and applies them to archives."""

    def __init__(self, config: PluginConfig) -> None:
        self.config = config
        self._logger = get_logger("manifest_assembler")

    def assemble(self, project: Optional[Any] = None) -> "OrderedDict[str, str]":
        """Derive the manifest attributes from the project metadata.

        Args:
            project: Plugin project providing the declared plugin dependencies

        Returns:
            Ordered attribute map; every value is a plain string

        Raises:
            ConfigurationError: If the short name or version is missing
        """
        config = self.config
        config.require_metadata()

        attributes: "OrderedDict[str, str]" = OrderedDict()
        attributes["Manifest-Version"] = "1.0"
        attributes["Created-By"] = f"jpikit {__version__}"
        attributes["Short-Name"] = config.short_name
        attributes["Long-Name"] = config.long_name
        if config.group:
            attributes["Group-Id"] = config.group
        if config.url:
            attributes["Url"] = config.url
        if config.compatible_since_version:
            attributes["Compatible-Since-Version"] = config.compatible_since_version
        if config.plugin_class:
            attributes["Plugin-Class"] = config.plugin_class
        attributes["Extension-Name"] = config.short_name
        attributes["Implementation-Title"] = config.short_name
        attributes["Implementation-Version"] = config.version
        attributes["Plugin-Version"] = config.version
        if config.core_version:
            attributes["Jenkins-Version"] = config.core_version
        if config.mask_classes:
            attributes["Mask-Classes"] = config.mask_classes
        if config.plugin_first_class_loader:
            attributes["PluginFirstClassLoader"] = "true"
        if config.sandbox_status:
            attributes["Sandbox-Status"] = "true"

        if project is not None:
            plugin_dependencies = self._plugin_dependencies(project)
            if plugin_dependencies:
                attributes["Plugin-Dependencies"] = plugin_dependencies

        developers = [
            f"{d.name}:{d.id}:{d.email}" for d in config.developers
        ]
        if developers:
            attributes["Plugin-Developers"] = ",".join(developers)

        for key, value in attributes.items():
            if not isinstance(value, str):
                raise ConfigurationError(
                    f"Manifest attribute {key} must be a string", config_key=key
                )
        return attributes

    @staticmethod
    def _plugin_dependencies(project: Any) -> str:
        entries: List[str] = []
        for dependency in project.declared(RoleName.PLUGINS, include_rewritten=False):
            entries.append(f"{dependency.name}:{dependency.version}")
        for dependency in project.declared(RoleName.OPTIONAL_PLUGINS, include_rewritten=False):
            entries.append(f"{dependency.name}:{dependency.version};resolution:=optional")
        return ",".join(entries)

    def apply(
            self,
            attributes: Mapping[str, str],
            targets: Iterable[ArchiveSpec],
    ) -> str:
        """Merge the attributes into each target and record them as an input.

        Attributes already present on a target and not produced here are kept.

        Returns:
            The fingerprint recorded on every target
        """
        digest = fingerprint(attributes)
        for target in targets:
            target.manifest.update(attributes)
            target.inputs[MANIFEST_INPUT] = dict(attributes)
            target.inputs[FINGERPRINT_INPUT] = digest
            self._logger.debug(
                "Applied manifest", archive=target.name, fingerprint=digest
            )
        return digest


def _wrap(line: bytes) -> List[bytes]:
    """Split an encoded header line into 72-byte chunks without breaking characters."""
    chunks: List[bytes] = []
    limit = MAX_LINE_BYTES
    while len(line) > limit:
        cut = limit
        # Do not split a UTF-8 sequence: continuation bytes start with 0b10.
        while cut > 0 and (line[cut] & 0xC0) == 0x80:
            cut -= 1
        chunks.append(line[:cut])
        line = b" " + line[cut:]
    chunks.append(line)
    return chunks


def write_manifest(attributes: Mapping[str, str]) -> bytes:
    """Serialize attributes in JAR manifest format.

    ``Manifest-Version`` is always written first.
    """
    ordered: "OrderedDict[str, str]" = OrderedDict()
    ordered["Manifest-Version"] = attributes.get("Manifest-Version", "1.0")
    for key, value in attributes.items():
        if key != "Manifest-Version":
            ordered[key] = value

    out: List[bytes] = []
    for key, value in ordered.items():
        for chunk in _wrap(f"{key}: {value}".encode("utf-8")):
            out.append(chunk + b"\r\n")
    out.append(b"\r\n")
    return b"".join(out)


def read_manifest(data: Union[bytes, str]) -> "OrderedDict[str, str]":
    """Parse the main section of a JAR manifest."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    attributes: "OrderedDict[str, str]" = OrderedDict()
    last_key: Optional[str] = None
    raw: Dict[str, bytes] = {}
    for line in data.replace(b"\r\n", b"\n").split(b"\n"):
        if not line:
            if attributes or raw:
                break
            continue
        if line.startswith(b" ") and last_key is not None:
            raw[last_key] += line[1:]
            continue
        key, _, value = line.partition(b":")
        last_key = key.decode("utf-8").strip()
        raw[last_key] = value[1:] if value.startswith(b" ") else value
    for key, value in raw.items():
        attributes[key] = value.decode("utf-8")
    return attributes
