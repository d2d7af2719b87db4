"""Shared fixtures for devenv tests."""

import io
import json
import shutil
import struct
import subprocess
import tempfile
import zipfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from devenv.utils.version import SemVer

GIT_IDENTITY = [
    "-c",
    "user.name=Test User",
    "-c",
    "user.email=test@example.com",
    "-c",
    "commit.gpgsign=false",
]


def make_version_resource(major: int, minor: int, build: int, revision: int = 0) -> bytes:
    """Build fake binary content carrying a VS_FIXEDFILEINFO block."""
    fixed_file_info = struct.pack(
        "<13I",
        0xFEEF04BD,
        0x00010000,
        (major << 16) | minor,
        (build << 16) | revision,
        (major << 16) | minor,
        (build << 16) | revision,
        0x3F,
        0,
        0x4,
        0x2,
        0,
        0,
        0,
    )
    return b"MZ" + b"\x00" * 126 + b"VS_VERSION_INFO\x00" + fixed_file_info + b"\x00" * 32


def make_platform_files(version: str) -> dict[str, bytes]:
    """Build the contents of a small platform archive for a version."""
    semver = SemVer.parse(version)
    return {
        "RockWeb/": b"",
        "RockWeb/Bin/Rock.dll": make_version_resource(semver.major, semver.minor, semver.patch),
        "RockWeb/Bin/Rock.Common.dll": b"common library",
        "RockWeb/Default.aspx": b"<%@ Page Language=\"C#\" %>",
        "RockWeb/web.config": b"<configuration />",
        "RockWeb/Scripts/": b"",
        "RockWeb/Scripts/app.js": b"console.log('app');",
        "RockWeb/App_Data/Cache/readme.txt": b"cache",
    }


def build_zip(files: dict[str, bytes]) -> bytes:
    """Build an in-memory zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def git(args: list[str], cwd: Path) -> str:
    """Run git in a test repository."""
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@pytest.fixture
def version_resource() -> Callable[..., bytes]:
    return make_version_resource


@pytest.fixture
def platform_files() -> Callable[[str], dict[str, bytes]]:
    return make_platform_files


@pytest.fixture
def zip_bytes() -> Callable[[dict[str, bytes]], bytes]:
    return build_zip


@pytest.fixture
def run_git() -> Callable[[list[str], Path], str]:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return git


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="devenv_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def environment_dir(temp_dir: Path) -> Path:
    """Create an empty environment directory."""
    path = temp_dir / "environment"
    path.mkdir()
    return path


@pytest.fixture
def write_descriptor(environment_dir: Path) -> Callable[[dict], Path]:
    """Factory writing environment.json into the environment directory."""

    def write(data: dict) -> Path:
        path = environment_dir / "environment.json"
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return write


@pytest.fixture
def archive_source(temp_dir: Path) -> Path:
    """Directory serving as a local platform archive source."""
    path = temp_dir / "archives"
    path.mkdir()
    return path


@pytest.fixture
def publish_archive(archive_source: Path) -> Callable[..., Path]:
    """Factory that writes a platform archive into the archive source."""

    def publish(version: str, files: dict[str, bytes] | None = None) -> Path:
        path = archive_source / f"Rock-{version}.zip"
        path.write_bytes(build_zip(files if files is not None else make_platform_files(version)))
        return path

    return publish


@pytest.fixture
def make_repo(temp_dir: Path, run_git: Callable[[list[str], Path], str]) -> Callable[..., Path]:
    """Factory creating a git repository with one commit."""

    def create(name: str, branch: str = "main") -> Path:
        path = temp_dir / "remotes" / name
        path.mkdir(parents=True)
        run_git(["init", "-q"], path)
        run_git(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], path)
        (path / "README.md").write_text(f"# {name}\n")
        run_git(["add", "README.md"], path)
        run_git(["commit", "-q", "-m", "Initial commit"], path)
        return path

    return create
