"""Schema-versioned JSON state document.

Reads self-heal: a corrupt, unknown or structurally invalid file is replaced
by the default document instead of raising. Writes go through a temp file and
an atomic rename, and are serialized so two writers never interleave.
"""

from __future__ import annotations

import copy
import errno
import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .versions import NOT_INSTALLED

logger = logging.getLogger(__name__)

STORAGE_SCHEMA_VERSION = 2

# Rename failures that mean "this filesystem will not cooperate" (Wine,
# network shares, emulated drives) rather than a real write error.
_RENAME_FALLBACK_ERRNOS = {
    errno.EPERM,
    errno.EACCES,
    errno.ENOENT,
    errno.EXDEV,
    errno.ESTALE,
}

LogReset = Callable[[str], None]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class DownloadProgress:
    url: str
    dest_path: str
    bytes_downloaded: int = 0
    total_bytes: int = 0
    sha256: str = ""
    is_paused: bool = False
    started_at: int = 0
    last_updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "destPath": self.dest_path,
            "bytesDownloaded": self.bytes_downloaded,
            "totalBytes": self.total_bytes,
            "sha256": self.sha256,
            "isPaused": self.is_paused,
            "startedAt": self.started_at,
            "lastUpdatedAt": self.last_updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["DownloadProgress"]:
        if not isinstance(data, dict):
            return None
        url, dest = data.get("url"), data.get("destPath")
        if not isinstance(url, str) or not isinstance(dest, str):
            return None
        try:
            return cls(
                url=url,
                dest_path=dest,
                bytes_downloaded=int(data.get("bytesDownloaded", 0)),
                total_bytes=int(data.get("totalBytes", 0)),
                sha256=str(data.get("sha256", "")),
                is_paused=bool(data.get("isPaused", False)),
                started_at=int(data.get("startedAt", 0)),
                last_updated_at=int(data.get("lastUpdatedAt", 0)),
            )
        except (TypeError, ValueError):
            return None


@dataclass
class BaseGameState:
    is_downloaded: bool = False
    is_extracted: bool = False


@dataclass
class PatchMarkers:
    downloaded_version: str = ""
    applied_version: str = ""


@dataclass
class GameState:
    installed_version: str = NOT_INSTALLED
    available_version: str = NOT_INSTALLED
    base_game: BaseGameState = field(default_factory=BaseGameState)
    patches: PatchMarkers = field(default_factory=PatchMarkers)
    download_progress: Optional[DownloadProgress] = None


@dataclass
class StoragePaths:
    install_path: str = ""
    download_path: str = ""
    custom_install_dir: Optional[str] = ""


@dataclass
class StorageDocument:
    schema_version: int = STORAGE_SCHEMA_VERSION
    paths: StoragePaths = field(default_factory=StoragePaths)
    game_state: GameState = field(default_factory=GameState)

    def to_dict(self) -> dict[str, Any]:
        paths: dict[str, Any] = {
            "installPath": self.paths.install_path,
            "downloadPath": self.paths.download_path,
        }
        if self.paths.custom_install_dir is not None:
            paths["customInstallDir"] = self.paths.custom_install_dir

        state = self.game_state
        game_state: dict[str, Any] = {
            "installedVersion": state.installed_version,
            "availableVersion": state.available_version,
            "baseGame": {
                "isDownloaded": state.base_game.is_downloaded,
                "isExtracted": state.base_game.is_extracted,
            },
            "patches": {
                "downloadedVersion": state.patches.downloaded_version,
                "appliedVersion": state.patches.applied_version,
            },
        }
        if state.download_progress is not None:
            game_state["downloadProgress"] = state.download_progress.to_dict()

        return {"schemaVersion": self.schema_version, "paths": paths, "gameState": game_state}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageDocument":
        """Build from a dict that already passed :func:`validate_storage_dict`."""
        paths = data["paths"]
        g = data["gameState"]
        progress = None
        if "downloadProgress" in g:
            progress = DownloadProgress.from_dict(g["downloadProgress"])
            if progress is None:
                logger.warning("Dropping malformed downloadProgress from storage")
        custom = paths.get("customInstallDir")
        return cls(
            schema_version=data["schemaVersion"],
            paths=StoragePaths(
                install_path=paths["installPath"],
                download_path=paths["downloadPath"],
                custom_install_dir=custom if isinstance(custom, str) else None,
            ),
            game_state=GameState(
                installed_version=g["installedVersion"],
                available_version=g["availableVersion"],
                base_game=BaseGameState(
                    is_downloaded=g["baseGame"]["isDownloaded"],
                    is_extracted=g["baseGame"]["isExtracted"],
                ),
                patches=PatchMarkers(
                    downloaded_version=g["patches"]["downloadedVersion"],
                    applied_version=g["patches"]["appliedVersion"],
                ),
                download_progress=progress,
            ),
        )


def default_document() -> StorageDocument:
    return StorageDocument()


def _valid_paths(paths: Any) -> bool:
    return (
        isinstance(paths, dict)
        and isinstance(paths.get("installPath"), str)
        and isinstance(paths.get("downloadPath"), str)
    )


def validate_storage_dict(data: Any) -> bool:
    """Structural check for the current schema.

    A missing ``availableVersion`` is filled in rather than rejected.
    """
    if not isinstance(data, dict):
        return False
    if type(data.get("schemaVersion")) is not int:
        return False
    if data["schemaVersion"] != STORAGE_SCHEMA_VERSION:
        return False
    if not _valid_paths(data.get("paths")):
        return False

    g = data.get("gameState")
    if not isinstance(g, dict):
        return False
    if not isinstance(g.get("installedVersion"), str):
        return False
    if not isinstance(g.get("availableVersion"), str):
        g["availableVersion"] = NOT_INSTALLED
    base = g.get("baseGame")
    if (
        not isinstance(base, dict)
        or not isinstance(base.get("isDownloaded"), bool)
        or not isinstance(base.get("isExtracted"), bool)
    ):
        return False
    patches = g.get("patches")
    if (
        not isinstance(patches, dict)
        or not isinstance(patches.get("downloadedVersion"), str)
        or not isinstance(patches.get("appliedVersion"), str)
    ):
        return False
    return True


def is_v1_document(data: Any) -> bool:
    if not isinstance(data, dict) or data.get("schemaVersion") != 1:
        return False
    if not _valid_paths(data.get("paths")):
        return False
    g = data.get("GAME_UPDATER")
    if not isinstance(g, dict) or not isinstance(g.get("currentVersion"), str):
        return False
    base = g.get("baseGame")
    if (
        not isinstance(base, dict)
        or not isinstance(base.get("downloaded"), bool)
        or not isinstance(base.get("extracted"), bool)
    ):
        return False
    updater = g.get("updater")
    return (
        isinstance(updater, dict)
        and isinstance(updater.get("downloaded"), str)
        and isinstance(updater.get("extracted"), str)
    )


def migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    legacy = data["GAME_UPDATER"]
    game_state: dict[str, Any] = {
        "installedVersion": legacy["currentVersion"],
        "availableVersion": legacy.get("latestVersion") if isinstance(legacy.get("latestVersion"), str) else NOT_INSTALLED,
        "baseGame": {
            "isDownloaded": legacy["baseGame"]["downloaded"],
            "isExtracted": legacy["baseGame"]["extracted"],
        },
        "patches": {
            "downloadedVersion": legacy["updater"]["downloaded"],
            "appliedVersion": legacy["updater"]["extracted"],
        },
    }
    if "downloadProgress" in legacy:
        game_state["downloadProgress"] = legacy["downloadProgress"]
    return {
        "schemaVersion": 2,
        "paths": copy.deepcopy(data["paths"]),
        "gameState": game_state,
    }


class StateStore:
    """Owner of the on-disk state file.

    Assumes a single process owns the file; there is no cross-process lock.
    """

    def __init__(self, path: Union[str, Path], log_reset: Optional[LogReset] = None):
        self.path = Path(path)
        self._log_reset = log_reset
        # Serializes reads, writes and read-modify-write. The in-place write
        # fallback is not atomic, so readers must never run beside a writer.
        self._lock = threading.RLock()

    @property
    def temp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    def _notify_reset(self, message: str, log_reset: Optional[LogReset]) -> None:
        logger.warning("%s", message)
        callback = log_reset or self._log_reset
        if callback:
            callback(message)

    def _reset(self, message: str, log_reset: Optional[LogReset]) -> StorageDocument:
        self._notify_reset(message, log_reset)
        document = default_document()
        try:
            self.write(document)
        except OSError as e:
            logger.error("Could not persist default storage to %s: %s", self.path, e)
        return document

    # --------------------------
    # Read
    # --------------------------
    def read(self, log_reset: Optional[LogReset] = None) -> StorageDocument:
        with self._lock:
            return self._read_locked(log_reset)

    def _read_locked(self, log_reset: Optional[LogReset]) -> StorageDocument:
        try:
            raw = self.path.read_text(encoding="utf-8")
            parsed = json.loads(raw)
        except FileNotFoundError:
            return self._reset(f"[storage] {self.path.name} not found, creating defaults.", log_reset)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            return self._reset(f"[storage] Could not read {self.path.name} ({e}), resetting.", log_reset)

        if is_v1_document(parsed):
            self._notify_reset(f"[storage] Migrating {self.path.name} from schema v1 to v2", log_reset)
            document = StorageDocument.from_dict(migrate_v1_to_v2(parsed))
            try:
                self.write(document)
            except OSError as e:
                logger.error("Could not persist migrated storage to %s: %s", self.path, e)
            return document

        if validate_storage_dict(parsed):
            return StorageDocument.from_dict(parsed)

        return self._reset(f"[storage] Invalid or outdated schema in {self.path.name}, resetting.", log_reset)

    # --------------------------
    # Write
    # --------------------------
    def _write_internal(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.temp_path
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            if e.errno not in _RENAME_FALLBACK_ERRNOS:
                raise
            logger.warning("Atomic rename of %s failed (%s); writing in place", self.path, e)
            try:
                tmp_path.unlink()
            except OSError:
                pass
            self.path.write_text(payload, encoding="utf-8")

    def write(self, document: StorageDocument) -> None:
        payload = json.dumps(document.to_dict(), indent=2)
        # A failed earlier write never propagates to the writer queued behind it.
        with self._lock:
            self._write_internal(payload)

    def update(
        self,
        mutator: Callable[[StorageDocument], None],
        log_reset: Optional[LogReset] = None,
    ) -> StorageDocument:
        with self._lock:
            document = self.read(log_reset)
            mutator(document)
            self.write(document)
            return document

    # --------------------------
    # Download progress
    # --------------------------
    def save_download_progress(self, progress: DownloadProgress) -> None:
        def _apply(doc: StorageDocument) -> None:
            saved = copy.copy(progress)
            saved.last_updated_at = now_ms()
            doc.game_state.download_progress = saved

        self.update(_apply)

    def get_download_progress(self) -> Optional[DownloadProgress]:
        return self.read().game_state.download_progress

    def clear_download_progress(self) -> None:
        def _apply(doc: StorageDocument) -> None:
            doc.game_state.download_progress = None

        self.update(_apply)

    def update_download_bytes(self, bytes_downloaded: int, total_bytes: int = 0) -> None:
        def _apply(doc: StorageDocument) -> None:
            progress = doc.game_state.download_progress
            if progress is not None:
                progress.bytes_downloaded = bytes_downloaded
                if total_bytes:
                    progress.total_bytes = total_bytes
                progress.last_updated_at = now_ms()

        self.update(_apply)

    def set_download_paused(self, is_paused: bool) -> None:
        def _apply(doc: StorageDocument) -> None:
            progress = doc.game_state.download_progress
            if progress is not None:
                progress.is_paused = is_paused
                progress.last_updated_at = now_ms()

        self.update(_apply)
