"""Default path resolver.

The patch engine never decides where things live; it is handed directories
by whoever owns an :class:`AppPaths`.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

APP_DIR_NAME = "GameUpdater"


def default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("APPDATA") or str(Path.home())
        return Path(base) / APP_DIR_NAME
    if platform.system() == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME.lower()


@dataclass(frozen=True)
class AppPaths:
    data_dir: Path
    custom_install_dir: Optional[Path] = None

    @classmethod
    def create(cls, data_dir: str = "", custom_install_dir: str = "") -> "AppPaths":
        root = Path(data_dir) if data_dir else default_data_dir()
        custom = Path(custom_install_dir) if custom_install_dir else None
        return cls(data_dir=root, custom_install_dir=custom)

    @property
    def install_base(self) -> Path:
        return self.custom_install_dir or self.data_dir

    @property
    def game_root(self) -> Path:
        return self.install_base / "Game"

    @property
    def downloads_root(self) -> Path:
        return self.install_base / "Downloads"

    # Storage and logs stay in the data dir even with a custom install dir.
    @property
    def storage_file(self) -> Path:
        return self.data_dir / "storage.json"

    @property
    def logs_root(self) -> Path:
        return self.data_dir / "logs"

    def ensure_dirs(self, include_game_dirs: bool = True) -> None:
        dirs = [self.data_dir, self.logs_root]
        if include_game_dirs:
            dirs.extend([self.game_root, self.downloads_root])
        for directory in dirs:
            directory.mkdir(parents=True, exist_ok=True)


def has_required_game_files(install_dir: Path | str, required_files: Iterable[str]) -> bool:
    root = Path(install_dir)
    names = list(required_files)
    if not names or not root.is_dir():
        return False
    return all((root / name).is_file() for name in names)
