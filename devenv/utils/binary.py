"""Read version metadata embedded in platform binaries.

Windows PE images (including .NET assemblies) carry a ``VS_FIXEDFILEINFO``
block in their version resource. The block starts with a fixed signature and
holds the file version as two 32-bit words.
"""

import logging
import struct
from pathlib import Path

from devenv.utils.version import BinaryVersion

logger = logging.getLogger(__name__)

FIXED_FILE_INFO_SIGNATURE = struct.pack("<I", 0xFEEF04BD)

# dwSignature, dwStrucVersion, dwFileVersionMS, dwFileVersionLS
_FIXED_FILE_INFO_HEADER = struct.Struct("<IIII")


def parse_fixed_file_info(data: bytes) -> BinaryVersion | None:
    """Extract the file version from raw binary content.

    Args:
        data: Binary file contents

    Returns:
        BinaryVersion, or None if no version resource is present
    """
    offset = data.find(FIXED_FILE_INFO_SIGNATURE)
    while offset != -1:
        if offset + _FIXED_FILE_INFO_HEADER.size > len(data):
            break

        _signature, struc_version, version_ms, version_ls = _FIXED_FILE_INFO_HEADER.unpack_from(
            data, offset
        )
        # Guards against the signature bytes turning up in unrelated data.
        if struc_version >> 16 == 1:
            return BinaryVersion(
                major=version_ms >> 16,
                minor=version_ms & 0xFFFF,
                build=version_ls >> 16,
                revision=version_ls & 0xFFFF,
            )

        offset = data.find(FIXED_FILE_INFO_SIGNATURE, offset + 1)

    return None


def read_binary_version(path: Path) -> BinaryVersion | None:
    """Read the file version embedded in a binary.

    Args:
        path: Path to the binary

    Returns:
        BinaryVersion, or None if the file has no version resource
    """
    version = parse_fixed_file_info(path.read_bytes())
    if version is None:
        logger.debug("No version resource found in %s", path)
    return version
