"""
Deterministic file checksums for migration integrity.

A migration that has already been applied must not change on disk. The
runner stores a checksum of each script file in the tracking store; the
validator recomputes it on later runs and flags a mismatch.

Examples:
    >>> compute_file_checksum("migrations/V202401010000_users.py")
    '9f86d081884c7d65...'  # 64-char sha256 hex

Tags:
    hashing, checksum, integrity, migrate-core

Doc-Types:
    - API Reference
"""

import hashlib
from pathlib import Path

SUPPORTED_ALGORITHMS = ("sha256", "md5")

_CHUNK_SIZE = 64 * 1024


def compute_file_checksum(path: str | Path, algorithm: str = "sha256") -> str:
    """
    Compute the hex digest of a file's contents.

    Args:
        path: File to hash
        algorithm: ``sha256`` (default) or ``md5``

    Returns:
        Hex digest string

    Raises:
        ValueError: unsupported algorithm
        OSError: file cannot be read
    """
    algorithm = algorithm.lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")

    digest = hashlib.new(algorithm)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def compute_text_checksum(content: str, algorithm: str = "sha256") -> str:
    """Hex digest of a string (UTF-8)."""
    algorithm = algorithm.lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    return hashlib.new(algorithm, content.encode("utf-8")).hexdigest()
