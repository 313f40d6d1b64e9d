"""Dependency coordinates and resolved artifacts.

This module defines the value types exchanged between the role graph, the
resolver and the packaging stages, and the classifier that tells host
extension archives apart from ordinary libraries.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from jpikit.utils.exceptions import ConfigurationError

# Legacy and current packaging types of a host extension archive.
HOST_EXTENSION_TYPES = ("hpi", "jpi")

_NOTATION_RE = re.compile(
    r"^(?P<group>[^:@\s]+):(?P<name>[^:@\s]+)(?::(?P<version>[^:@\s]+))?"
    r"(?::(?P<classifier>[^:@\s]+))?(?:@(?P<extension>[^:@\s]+))?$"
)

_QUALIFIER_RANKS = {
    "alpha": 0, "a": 0,
    "beta": 1, "b": 1,
    "milestone": 2, "m": 2,
    "rc": 3, "cr": 3,
    "snapshot": 4,
    "": 5, "ga": 5, "final": 5, "release": 5,
    "sp": 6,
}


class ArtifactKind(str, enum.Enum):
    """Classification of a resolved artifact."""

    HOST_EXTENSION = "host-extension"
    ORDINARY_LIBRARY = "ordinary-library"


@dataclass(frozen=True, order=True)
class ModuleId:
    """Identity of a module independent of its version."""

    group: str
    name: str

    def __str__(self) -> str:
        return f"{self.group}:{self.name}"


@dataclass(frozen=True)
class Dependency:
    """A declared dependency.

    Attributes:
        group: Module group
        name: Module name
        version: Requested version, ``None`` for version-less declarations
        classifier: Optional artifact classifier
        extension: Requested artifact extension. Set by the ``@ext`` notation,
            which also turns off transitive resolution.
        transitive: Whether the module's own dependencies are resolved
        reason: Free text explaining why the dependency exists
    """

    group: str
    name: str
    version: Optional[str] = None
    classifier: Optional[str] = None
    extension: Optional[str] = None
    transitive: bool = True
    reason: Optional[str] = field(default=None, compare=False)

    @classmethod
    def parse(cls, notation: str, reason: Optional[str] = None) -> Dependency:
        """Parse a ``group:name[:version[:classifier]][@extension]`` notation.

        Raises:
            ConfigurationError: If the notation is malformed
        """
        match = _NOTATION_RE.match(notation.strip())
        if not match:
            raise ConfigurationError(f"Invalid dependency notation: {notation!r}")
        extension = match.group("extension")
        return cls(
            group=match.group("group"),
            name=match.group("name"),
            version=match.group("version"),
            classifier=match.group("classifier"),
            extension=extension,
            transitive=extension is None,
            reason=reason,
        )

    @property
    def module_id(self) -> ModuleId:
        return ModuleId(self.group, self.name)

    @property
    def coordinate(self) -> str:
        parts = [self.group, self.name]
        if self.version:
            parts.append(self.version)
            if self.classifier:
                parts.append(self.classifier)
        notation = ":".join(parts)
        if self.extension:
            notation += f"@{self.extension}"
        return notation

    def __str__(self) -> str:
        return self.coordinate


@dataclass(frozen=True)
class ResolvedArtifact:
    """A resolved binary produced by the resolver.

    Attributes:
        group: Module group
        name: Module name
        version: Selected version
        type: Declared packaging type (``jar``, ``hpi``, ``jpi``, ...)
        extension: File extension of the binary
        file: Location of the binary
        classifier: Optional artifact classifier
    """

    group: str
    name: str
    version: str
    type: str
    extension: str
    file: Path
    classifier: Optional[str] = None

    @property
    def module_id(self) -> ModuleId:
        return ModuleId(self.group, self.name)

    @property
    def coordinate(self) -> str:
        return f"{self.group}:{self.name}:{self.version}"

    @property
    def file_name(self) -> str:
        return self.file.name

    def __str__(self) -> str:
        return f"{self.coordinate}@{self.extension}"


@dataclass(frozen=True)
class RewrittenDependency:
    """A host extension re-declared on another role as a compile-only jar.

    One instance exists per module per target role.
    """

    group: str
    name: str
    version: str
    source_role: str
    target_role: str

    @classmethod
    def from_artifact(
            cls, artifact: ResolvedArtifact, source_role: str, target_role: str
    ) -> RewrittenDependency:
        return cls(artifact.group, artifact.name, artifact.version, source_role, target_role)

    @property
    def module_id(self) -> ModuleId:
        return ModuleId(self.group, self.name)

    @property
    def reason(self) -> str:
        return f"added jar for compilation support (plugin present on {self.source_role})"

    def to_dependency(self) -> Dependency:
        """Return the classpath-only, non-transitive declaration."""
        return Dependency(
            group=self.group,
            name=self.name,
            version=self.version,
            extension="jar",
            transitive=False,
            reason=self.reason,
        )


def classify(artifact: ResolvedArtifact) -> ArtifactKind:
    """Classify an artifact by its declared packaging type."""
    if artifact.type.lower() in HOST_EXTENSION_TYPES:
        return ArtifactKind.HOST_EXTENSION
    return ArtifactKind.ORDINARY_LIBRARY


def is_host_extension(artifact: ResolvedArtifact) -> bool:
    return classify(artifact) is ArtifactKind.HOST_EXTENSION


_RELEASE = (0, _QUALIFIER_RANKS[""], "")


def _trim_null_items(items: List[Tuple[int, int, str]]) -> None:
    # Trailing zeros and release qualifiers carry no weight: 1.0.0 == 1 == 1-final.
    while items and items[-1] in ((1, 0, ""), _RELEASE):
        items.pop()


def version_key(version: str) -> Tuple[Tuple[int, int, str], ...]:
    """Build a sort key that orders versions the way Maven does for common cases.

    Numeric segments compare numerically and rank above qualifiers, qualifiers
    follow ``alpha < beta < milestone < rc < snapshot < release < sp``. Zero
    segments before a qualifier or at the end are dropped, so ``1.0`` and
    ``1.0.0`` are the same version.
    """
    items: List[Tuple[int, int, str]] = []
    for token in re.findall(r"\d+|[a-zA-Z]+", version.lower()):
        if token.isdigit():
            items.append((1, int(token), ""))
            continue
        _trim_null_items(items)
        rank = _QUALIFIER_RANKS.get(token, 7)
        items.append((0, rank, token if rank == 7 else ""))
    _trim_null_items(items)
    items.append(_RELEASE)
    return tuple(items)
