"""Where the platform lives inside an environment and what it looks like."""

from dataclasses import dataclass, field

from devenv.utils.version import EXACT_MATCH_THRESHOLD

DEFAULT_SOURCE_URL = "https://rockrms.blob.core.windows.net/developer/environments"


def resolve_archive_url(base_url: str, platform_name: str, version: str) -> str:
    """Build the URL of a versioned platform archive.

    Example: resolve_archive_url("https://host/envs/", "Rock", "1.16.3")
    returns "https://host/envs/Rock-1.16.3.zip".
    """
    return f"{base_url.rstrip('/')}/{platform_name}-{version}.zip"


@dataclass(frozen=True)
class PlatformLayout:
    """Fixed facts about the platform distribution.

    Attributes:
        name: Platform name, used for archive names and status output
        directory: Platform directory relative to the environment root
        binary_path: Main binary relative to the platform directory; its
            embedded version identifies the installed release
        manifest_file: Manifest filename inside the platform directory
        preserved_paths: Paths relative to the platform directory that
            survive a forceful removal
        volatile_prefixes: Paths the running platform rewrites on its own,
            excluded from drift detection
        source_url: Default base URL for versioned archives
        exact_match_threshold: First major version matched on major.minor only
    """

    name: str = "Rock"
    directory: str = "Rock"
    binary_path: str = "RockWeb/Bin/Rock.dll"
    manifest_file: str = ".rock.json"
    preserved_paths: frozenset[str] = field(
        default_factory=lambda: frozenset(
            {
                "RockWeb/web.ConnectionStrings.config",
                "RockWeb/Plugins",
                "RockWeb/App_Data",
            }
        )
    )
    volatile_prefixes: tuple[str, ...] = ("RockWeb/App_Data/",)
    source_url: str = DEFAULT_SOURCE_URL
    exact_match_threshold: int = EXACT_MATCH_THRESHOLD

    def archive_url(self, base_url: str, version: str) -> str:
        """Build the download URL for a platform version."""
        return resolve_archive_url(base_url, self.name, version)


DEFAULT_LAYOUT = PlatformLayout()
