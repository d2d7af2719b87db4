"""Pydantic schemas for devenv configuration files.

This module defines the data models for:
- environment.json (environment descriptor)
- .rock.json (installation manifest inside the platform directory)

Unknown keys are kept on every descriptor model so that fields written by
hand, or by a newer version of the tool, survive a load/save cycle.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from devenv.utils.filesystem import is_unsafe_relative_path, normalize_separators

# Platform version value meaning "installed and maintained by hand".
CUSTOM_PLATFORM_VERSION = "custom"


# =============================================================================
# Environment Descriptor (environment.json)
# =============================================================================


class OrganizationConfig(BaseModel):
    """The organization that owns the environment.

    The code is used for generated namespaces and should not change once
    plugins reference it.
    """

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    code: str | None = None


class PlatformConfig(BaseModel):
    """The platform binary distribution to install in the environment."""

    model_config = ConfigDict(extra="allow")

    version: str | None = None

    @property
    def is_managed(self) -> bool:
        """Whether the platform lifecycle is handled by devenv."""
        return bool(self.version) and self.version != CUSTOM_PLATFORM_VERSION


class PluginEntry(BaseModel):
    """A plugin repository checked out inside the environment."""

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    path: str
    url: str | None = None
    branch: str | None = None

    @field_validator("path", mode="before")
    @classmethod
    def validate_path(cls, v: object) -> object:
        """Require a non-blank relative path and normalize its separators."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError("All plugins must define a path")
        normalized = normalize_separators(v.strip())
        if is_unsafe_relative_path(normalized):
            raise ValueError(f"Plugin path must be relative to the environment: {v}")
        path = normalized.rstrip("/")
        if path in ("", "."):
            raise ValueError("All plugins must define a path")
        return path

    @field_validator("url", "branch", mode="before")
    @classmethod
    def blank_to_none(cls, v: object) -> object:
        """Treat empty strings the same as a missing value."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class EnvironmentDescriptor(BaseModel):
    """Environment descriptor (environment.json) schema."""

    model_config = ConfigDict(extra="allow")

    organization: OrganizationConfig = Field(default_factory=OrganizationConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    plugins: list[PluginEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_paths(self) -> "EnvironmentDescriptor":
        """Validate that no two plugins share a path."""
        seen: set[str] = set()
        for plugin in self.plugins:
            key = plugin.path.casefold()
            if key in seen:
                raise ValueError(f"Plugin path '{plugin.path}' is defined more than once")
            seen.add(key)
        return self

    def get_plugin(self, path: str) -> PluginEntry | None:
        """Find the plugin entry for a relative path."""
        key = normalize_separators(path).rstrip("/").casefold()
        return next((p for p in self.plugins if p.path.casefold() == key), None)


# =============================================================================
# Installation Manifest (.rock.json)
# =============================================================================


class InstallationManifest(BaseModel):
    """Digests of every file extracted from a platform archive.

    Keys are slash-separated paths relative to the platform directory.
    """

    files: dict[str, str] = Field(default_factory=dict)

    @property
    def file_count(self) -> int:
        return len(self.files)
