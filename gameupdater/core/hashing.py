"""SHA-256 helpers for archive verification."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

_READ_CHUNK = 1024 * 1024


def compute_sha256(file_path: Union[str, Path]) -> str:
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
            hasher.update(chunk)
    return hasher.hexdigest().lower()


def verify_sha256(file_path: Union[str, Path], expected_hash: str) -> bool:
    """Return whether ``file_path`` hashes to ``expected_hash``.

    Read failures (missing file, permission) raise ``OSError`` instead of
    returning ``False`` so callers can tell "could not check" from "checked
    and it is wrong".
    """
    if not expected_hash:
        return False
    actual = compute_sha256(file_path)
    expected = expected_hash.strip().lower()
    if actual != expected:
        logger.error("Checksum mismatch for %s: expected %s, actual %s", file_path, expected, actual)
        return False
    logger.info("Checksum verified for %s", file_path)
    return True
