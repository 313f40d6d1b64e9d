from __future__ import annotations

import enum
import json
import os
import pathlib
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from jpikit.utils.exceptions import ConfigurationError

# Conventional suffix trimmed from a project name to derive the short name.
PLUGIN_SUFFIX = "-plugin"

ENV_PREFIX = "JPIKIT_"


class FileExtension(str, enum.Enum):
    """Accepted extensions of the packaged archive. The first is the default."""

    HPI = "hpi"
    JPI = "jpi"

    def __str__(self) -> str:
        return self.value


class Developer(BaseModel):
    """A plugin developer listed in the manifest."""

    id: str = ""
    name: str = ""
    email: str = ""


class PluginConfig(BaseModel):
    """Configuration of a plugin project.

    The model carries the project metadata consumed by the manifest, the
    archive naming options, the dependency declarations per role and the
    switches consumed from the host build (repositories, publishing, test
    injection).

    Attributes:
        project_name: Identifier of the project, used for the library jar
        group: Maven group of the plugin
        version: Version of the plugin
        short_name: Short identifier; defaults to the project name without ``-plugin``
        display_name: Human readable name; defaults to the short name
        file_extension: Archive extension, ``hpi`` or ``jpi``
        core_version: Version of the host platform the plugin is built against
        url: Plugin home page
        compatible_since_version: Oldest version whose configuration is compatible
        plugin_class: Fully qualified plugin entry class
        mask_classes: Packages hidden from the host class loader
        plugin_first_class_loader: Whether plugin classes win over host classes
        sandbox_status: Whether the plugin declares sandbox support
        developers: Developers listed in the manifest
        configure_repositories: Whether default repositories are added
        configure_publishing: Whether publishing is set up by the host build
        disabled_test_injection: Whether the generated test class is skipped
        injected_test_name: Name of the generated test class
        repositories: Local Maven-layout repository directories
        fail_on_version_conflict: Whether conflicting versions fail resolution
        max_workers: Worker threads used to resolve independent roles
        project_dir: Base directory for relative paths
        output_dir: Directory receiving the archives
        classes_dir: Compiled classes and resources of the plugin
        license_dir: Generated license report directory
        dependencies: Dependency notations per role
        logging: Logging settings
    """

    project_name: Optional[str] = None
    group: Optional[str] = None
    version: Optional[str] = None
    short_name: Optional[str] = None
    display_name: Optional[str] = None
    file_extension: FileExtension = FileExtension.HPI
    core_version: Optional[str] = None
    url: Optional[str] = None
    compatible_since_version: Optional[str] = None
    plugin_class: Optional[str] = None
    mask_classes: Optional[str] = None
    plugin_first_class_loader: bool = False
    sandbox_status: bool = False
    developers: List[Developer] = Field(default_factory=list)
    configure_repositories: bool = True
    configure_publishing: bool = True
    disabled_test_injection: bool = False
    injected_test_name: str = "InjectedTest"
    repositories: List[pathlib.Path] = Field(default_factory=list)
    fail_on_version_conflict: bool = False
    max_workers: int = Field(default=4, ge=1)
    project_dir: pathlib.Path = pathlib.Path(".")
    output_dir: pathlib.Path = pathlib.Path("build/libs")
    classes_dir: pathlib.Path = pathlib.Path("build/classes")
    license_dir: Optional[pathlib.Path] = None
    dependencies: Dict[str, List[str]] = Field(default_factory=dict)
    logging: Dict[str, Any] = Field(
        default_factory=lambda: {'level': 'INFO', 'format': 'text'},
        description='Logging settings',
    )

    @field_validator("file_extension", mode="before")
    @classmethod
    def validate_file_extension(cls, v: Any) -> Any:
        """Accept the extension with or without a leading dot."""
        if isinstance(v, str):
            return v.lstrip(".").lower()
        return v

    @field_validator("dependencies", mode="before")
    @classmethod
    def validate_dependencies(cls, v: Any) -> Any:
        """Allow a single notation string where a list is expected."""
        if isinstance(v, dict):
            return {
                role: [notations] if isinstance(notations, str) else (notations or [])
                for role, notations in v.items()
            }
        return v

    @model_validator(mode="after")
    def derive_short_name(self) -> "PluginConfig":
        """Default the short name to the project name with ``-plugin`` trimmed."""
        if not self.short_name and self.project_name:
            name = self.project_name
            if name.endswith(PLUGIN_SUFFIX) and len(name) > len(PLUGIN_SUFFIX):
                name = name[:-len(PLUGIN_SUFFIX)]
            self.short_name = name
        return self

    @property
    def long_name(self) -> Optional[str]:
        return self.display_name or self.short_name

    @property
    def archive_name(self) -> str:
        """File name of the packaged archive."""
        return f"{self.short_name}.{self.file_extension.value}"

    @property
    def is_snapshot(self) -> bool:
        return bool(self.version and self.version.endswith("-SNAPSHOT"))

    def resolve_path(self, path: Union[str, pathlib.Path]) -> pathlib.Path:
        """Resolve a path relative to the project directory."""
        path = pathlib.Path(path).expanduser()
        if path.is_absolute():
            return path
        return self.project_dir / path

    def effective_repositories(self) -> List[pathlib.Path]:
        """Repositories used for resolution.

        With ``configure_repositories`` enabled and nothing configured, the
        user's local Maven repository is used.
        """
        repositories = [self.resolve_path(r) for r in self.repositories]
        if not repositories and self.configure_repositories:
            repositories.append(pathlib.Path.home() / ".m2" / "repository")
        return repositories

    def require_metadata(self) -> None:
        """Check that the metadata needed to package the plugin is present.

        Raises:
            ConfigurationError: If the short name or version is missing
        """
        if not self.short_name:
            raise ConfigurationError(
                "A short name (or project name) is required", config_key="short_name"
            )
        if not self.version:
            raise ConfigurationError("A plugin version is required", config_key="version")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> PluginConfig:
        """Create a PluginConfig from a dictionary.

        Raises:
            ConfigurationError: If the values do not validate
        """
        try:
            return cls(**config_dict)
        except ValidationError as e:
            errors = e.errors()
            error_details = ', '.join((
                f"{'.'.join((str(loc) for loc in error['loc']))}: {error['msg']}"
                for error in errors
            ))
            first_key = '.'.join(str(loc) for loc in errors[0]['loc']) if errors else None
            raise ConfigurationError(
                f'Invalid configuration: {error_details}',
                config_key=first_key,
                details={'validation_errors': [error['msg'] for error in errors]}
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        """Convert the configuration to a JSON compatible dictionary."""
        return self.model_dump(mode="json")


def load_config(
        config_path: Union[str, pathlib.Path],
        env_prefix: str = ENV_PREFIX,
        environ: Optional[Dict[str, str]] = None,
) -> PluginConfig:
    """Load a plugin configuration from a YAML or JSON file.

    Environment variables starting with ``env_prefix`` override top-level
    values, e.g. ``JPIKIT_VERSION=1.2``. ``project_dir`` defaults to the
    directory holding the file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_path = pathlib.Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(
            f'Config file not found: {config_path}', config_key='config_path'
        )

    try:
        content = config_path.read_text(encoding='utf-8')
        if config_path.suffix.lower() in ('.yaml', '.yml'):
            file_config = yaml.safe_load(content)
        elif config_path.suffix.lower() == '.json':
            file_config = json.loads(content)
        else:
            raise ConfigurationError(
                f'Unsupported config file format: {config_path.suffix}',
                config_key='config_path'
            )
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f'Error parsing config file {config_path}: {str(e)}',
            config_key='config_path'
        ) from e

    if not isinstance(file_config or {}, dict):
        raise ConfigurationError(
            f'Config file {config_path} must contain a mapping', config_key='config_path'
        )
    config: Dict[str, Any] = dict(file_config or {})
    config.setdefault('project_dir', str(config_path.parent))
    _apply_env_vars(config, env_prefix, os.environ if environ is None else environ)
    return PluginConfig.from_dict(config)


def _apply_env_vars(config: Dict[str, Any], prefix: str, environ: Dict[str, str]) -> None:
    """Override top-level configuration values with environment variables."""
    for env_name, env_value in environ.items():
        if not env_name.startswith(prefix):
            continue
        key = env_name[len(prefix):].lower()
        if key in PluginConfig.model_fields:
            config[key] = _parse_env_value(env_value)


def _parse_env_value(value: str) -> Any:
    """Parse environment variable values into booleans where they look like one."""
    if value.lower() in ('true', 'yes', 'on'):
        return True
    if value.lower() in ('false', 'no', 'off'):
        return False
    return value
