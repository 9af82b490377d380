"""Default archive extractor used by the patch orchestrator.

The orchestrator only relies on the :class:`Extractor` protocol; this ZIP
implementation merges archive contents into the destination, overwriting
existing files, which is what both the base game and delta patches need.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from ..core.errors import ExtractionError

logger = logging.getLogger(__name__)

ExtractProgress = Callable[[int, int], None]
PathLike = Union[str, Path]


@dataclass(frozen=True)
class ExtractionCheck:
    success: bool
    file_count: int


class Extractor(Protocol):
    def extract(self, archive_path: PathLike, dest_dir: PathLike, on_progress: Optional[ExtractProgress] = None) -> None: ...

    def verify_extracted(self, dest_dir: PathLike, min_file_count: int) -> ExtractionCheck: ...


def count_files(root: PathLike) -> int:
    total = 0
    for _, _, files in os.walk(root):
        total += len(files)
    return total


class ZipExtractor:
    def _member_target(self, base_path: Path, member: zipfile.ZipInfo) -> Path:
        normalized_name = member.filename.replace("\\", "/")
        member_path = Path(normalized_name)
        first_part = member_path.parts[0] if member_path.parts else ""
        if (
            member_path.is_absolute()
            or normalized_name.startswith("/")
            or ".." in member_path.parts
        ):
            raise ExtractionError(f"Unsafe archive entry, refusing to extract: {member.filename}")
        if ":" in first_part or re.match(r"^[A-Za-z]:", first_part):
            raise ExtractionError(f"Unsafe archive entry, refusing to extract: {member.filename}")

        unix_mode = (member.external_attr >> 16) & 0o170000
        if unix_mode == stat.S_IFLNK:
            raise ExtractionError(f"Unsafe archive entry, refusing to extract: {member.filename}")

        resolved_path = (base_path / normalized_name).resolve()
        if not resolved_path.is_relative_to(base_path):
            raise ExtractionError(f"Unsafe archive entry, refusing to extract: {member.filename}")
        return resolved_path

    def extract(self, archive_path: PathLike, dest_dir: PathLike, on_progress: Optional[ExtractProgress] = None) -> None:
        archive_path = Path(archive_path)
        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)
        base_path = dest.resolve()
        logger.info("Extracting %s (%s bytes) into %s", archive_path, archive_path.stat().st_size, dest)

        try:
            with zipfile.ZipFile(archive_path, "r") as zip_ref:
                members = zip_ref.infolist()
                total = len(members)
                for index, member in enumerate(members, start=1):
                    target = self._member_target(base_path, member)
                    if member.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                    else:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with zip_ref.open(member, "r") as src, open(target, "wb") as dst:
                            shutil.copyfileobj(src, dst)
                    if on_progress:
                        on_progress(index, total)
        except zipfile.BadZipFile as e:
            raise ExtractionError(f"Failed to extract {archive_path.name}: {e}") from e
        logger.info("Extraction complete: %s entries", total)

    def verify_extracted(self, dest_dir: PathLike, min_file_count: int) -> ExtractionCheck:
        if not Path(dest_dir).is_dir():
            logger.error("Extraction target %s does not exist", dest_dir)
            return ExtractionCheck(success=False, file_count=0)
        file_count = count_files(dest_dir)
        if file_count < min_file_count:
            logger.error(
                "File count too low in %s: expected at least %s, found %s",
                dest_dir,
                min_file_count,
                file_count,
            )
            return ExtractionCheck(success=False, file_count=file_count)
        logger.info("Verified %s files in %s", file_count, dest_dir)
        return ExtractionCheck(success=True, file_count=file_count)
