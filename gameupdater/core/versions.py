from __future__ import annotations

import logging
from typing import Optional

from packaging import version

logger = logging.getLogger(__name__)

# Persisted installedVersion before anything has been installed.
NOT_INSTALLED = "0.0.0"


def _segments(value: str) -> list[int]:
    parts = []
    for raw in value.split("."):
        try:
            parts.append(int(raw))
        except ValueError:
            parts.append(0)
    return parts


def compare_versions(a: Optional[str], b: Optional[str]) -> int:
    """Return -1, 0 or 1; a missing version sorts before any present one."""
    if not a and not b:
        return 0
    if not a:
        return -1
    if not b:
        return 1
    try:
        va, vb = version.parse(a), version.parse(b)
    except version.InvalidVersion:
        pa, pb = _segments(a), _segments(b)
        width = max(len(pa), len(pb))
        pa += [0] * (width - len(pa))
        pb += [0] * (width - len(pb))
        return (pa > pb) - (pa < pb)
    return (va > vb) - (va < vb)


def is_installed(installed_version: Optional[str]) -> bool:
    return bool(installed_version) and installed_version != NOT_INSTALLED


def is_launcher_supported(minimum_version: Optional[str], current_version: str) -> bool:
    if not minimum_version:
        return True
    supported = compare_versions(current_version, minimum_version) >= 0
    if not supported:
        logger.warning("Launcher %s is older than required minimum %s", current_version, minimum_version)
    return supported
