"""
SHA-256 verification of downloaded artifacts.
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import NamedTuple

from daemux_updater.logging import get_logger

logger = get_logger(__name__)

SHA256_HEX_PATTERN = re.compile(r"^[a-fA-F0-9]{64}$")
CHUNK_SIZE = 64 * 1024


class ChecksumResult(NamedTuple):
    """Result of a checksum comparison."""

    valid: bool
    actual: str


def compute_sha256(file_path: Path | str) -> str:
    """
    Compute the SHA-256 of a file, reading it in chunks.

    Raises:
        OSError: If the file cannot be read.
    """
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(
    file_path: Path | str,
    expected_hex: str,
    log: logging.Logger | None = None,
) -> ChecksumResult:
    """
    Compare a file's SHA-256 against an expected hex digest.

    A mismatch is an ordinary result, not an exception. An expected value
    that is not 64 hex characters can never match, so it is reported as
    invalid without reading the file.

    Args:
        file_path: File to hash.
        expected_hex: Expected digest, case-insensitive.
        log: Logger to use. Defaults to the module logger.

    Returns:
        ChecksumResult with ``valid`` and the lowercase ``actual`` digest
        (empty when the expected value was malformed).

    Raises:
        OSError: If the file cannot be read.
    """
    log = log or logger

    if not SHA256_HEX_PATTERN.match(expected_hex):
        log.error(
            "Invalid SHA-256 hash format",
            extra={"expected": expected_hex, "length": len(expected_hex)},
        )
        return ChecksumResult(valid=False, actual="")

    actual = compute_sha256(file_path)
    valid = actual == expected_hex.lower()

    if valid:
        log.debug("Checksum verified", extra={"path": str(file_path)})
    else:
        log.warning(
            "Checksum mismatch",
            extra={
                "path": str(file_path),
                "expected": expected_hex.lower(),
                "actual": actual,
            },
        )

    return ChecksumResult(valid=valid, actual=actual)
