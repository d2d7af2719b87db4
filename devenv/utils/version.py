"""Semantic versioning utilities and the platform version policy."""

import re
from dataclasses import dataclass, field

# Starting with this major version the platform only bumps the patch number
# for hotfix builds, so installed binaries are matched on major.minor alone.
EXACT_MATCH_THRESHOLD = 2

_SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


@dataclass(frozen=True)
class SemVer:
    """Strict semantic version. Build metadata does not take part in equality."""

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = field(default=None, compare=False)

    @classmethod
    def parse(cls, version_str: str) -> "SemVer":
        """Parse a strict semver string.

        Args:
            version_str: Version string (e.g., "1.16.3", "2.0.0-beta.1+build.123")

        Returns:
            SemVer instance

        Raises:
            ValueError: If the string is not valid semver
        """
        match = _SEMVER_PATTERN.match(version_str)
        if not match:
            raise ValueError(f"Invalid semver: {version_str}")

        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            prerelease=match.group("prerelease"),
            build=match.group("build"),
        )

    @classmethod
    def try_parse(cls, version_str: str | None) -> "SemVer | None":
        """Parse a semver string, returning None if it is not valid."""
        if version_str is None:
            return None
        try:
            return cls.parse(version_str)
        except ValueError:
            return None

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        if self.build:
            version += f"+{self.build}"
        return version


@dataclass(frozen=True)
class BinaryVersion:
    """Four-part version number embedded in a compiled binary."""

    major: int
    minor: int
    build: int
    revision: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}.{self.revision}"


def binary_matches_version(
    expected: SemVer, installed: BinaryVersion, threshold: int = EXACT_MATCH_THRESHOLD
) -> bool:
    """Check if an installed binary satisfies the requested platform version.

    Below the threshold major version the binary must match exactly on
    major.minor.patch (patch is stored in the build component). At or above
    it only major.minor must match.

    Args:
        expected: Version requested by the environment descriptor
        installed: Version read from the installed binary
        threshold: First major version matched on major.minor only

    Returns:
        True if the installed binary is acceptable
    """
    if expected.major < threshold:
        return (expected.major, expected.minor, expected.patch) == (
            installed.major,
            installed.minor,
            installed.build,
        )

    return (expected.major, expected.minor) == (installed.major, installed.minor)
