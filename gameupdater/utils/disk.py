import logging
from pathlib import Path
from typing import Union

import psutil

from ..core.errors import InsufficientSpaceError

logger = logging.getLogger(__name__)


def _existing_ancestor(path: Path) -> Path:
    current = path
    while not current.exists() and current.parent != current:
        current = current.parent
    return current


def free_bytes(directory: Union[str, Path]) -> int:
    return int(psutil.disk_usage(str(_existing_ancestor(Path(directory)))).free)


def ensure_free_space(directory: Union[str, Path], required_bytes: int, margin_bytes: int = 0) -> None:
    if required_bytes <= 0:
        return
    available = free_bytes(directory)
    needed = required_bytes + max(0, margin_bytes)
    if available < needed:
        logger.error("Not enough space in %s: need %s bytes, %s available", directory, needed, available)
        raise InsufficientSpaceError(
            f"ENOSPC: no space left for download in {directory}: need {needed} bytes, {available} available"
        )
