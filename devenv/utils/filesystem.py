"""Filesystem utilities for devenv."""

import hashlib
import os
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 8192


def compute_stream_digest(stream: BinaryIO) -> str:
    """Compute the content digest of a byte stream.

    The stream is read to the end. The same bytes always produce the same
    digest, whether they come from an archive entry or a file on disk.

    Args:
        stream: Readable binary stream

    Returns:
        Upper-case hex-encoded SHA-1 digest
    """
    hasher = hashlib.sha1()
    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
        hasher.update(chunk)
    return hasher.hexdigest().upper()


def compute_file_digest(path: Path) -> str:
    """Compute the content digest of a file.

    Args:
        path: Path to the file

    Returns:
        Upper-case hex-encoded SHA-1 digest
    """
    with open(path, "rb") as f:
        return compute_stream_digest(f)


def normalize_separators(path: str) -> str:
    """Convert all path separators to forward slashes."""
    return path.replace("\\", "/")


def relative_key(root: Path, path: Path) -> str:
    """Get the slash-normalized path of ``path`` relative to ``root``."""
    return normalize_separators(os.path.relpath(path, root))


def friendly_path(path: Path) -> str:
    """Get a path suitable for display.

    Paths below the current directory are shown relative to it.
    """
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


def is_empty_directory(path: Path) -> bool:
    """Check if a directory is empty.

    Returns:
        True if the directory does not exist or has no entries
    """
    if not path.is_dir():
        return True
    return not any(path.iterdir())


def is_unsafe_relative_path(path: str) -> bool:
    """Check if a relative path would escape the directory it is joined to."""
    normalized = normalize_separators(path)
    if normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
        return True
    return ".." in normalized.split("/")


def write_text_file(path: Path, content: str) -> None:
    """Write content to a text file.

    Args:
        path: Path to the file
        content: Content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def write_text_file_atomic(path: Path, content: str) -> None:
    """Write a text file so readers never observe a partial file.

    The content goes to a sibling temporary file which then replaces
    the destination.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.tmp")
    temp_path.write_text(content, encoding="utf-8")
    os.replace(temp_path, path)
