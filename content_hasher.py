"""
Content Hasher
Git blob digests for byte-exact comparison with GitHub tree entries
"""

import hashlib
from pathlib import Path


def blob_sha1(data):
    """Compute the git blob SHA-1 of raw bytes.

    Args:
        data: bytes - File content

    Returns:
        str - 40 character hex digest, identical to the 'sha' GitHub reports
    """
    header = b'blob %d\x00' % len(data)
    return hashlib.sha1(header + data).hexdigest()


def compute_blob_sha1(path):
    """Compute the git blob SHA-1 of a local file.

    Args:
        path: str/Path - File to hash

    Returns:
        str - Hex digest

    Raises:
        OSError - File is missing or unreadable
    """
    return blob_sha1(Path(path).read_bytes())
