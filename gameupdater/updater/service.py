"""High-level update operations for the launcher UI and CLI.

``UpdateService`` wires the state store, downloader and orchestrator together
and turns failures into classified outcomes instead of exceptions, so callers
only need to look at ``OperationOutcome``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests  # type: ignore[import-untyped]

from ..core.error_classifier import CategorizedError, classify
from ..core.errors import UpdaterError
from ..core.launcher_state import LauncherState, StateContext, get_launcher_state
from ..core.manifest import PatchManifest, ReleaseManifest, fetch_patch_manifest, fetch_release
from ..core.paths import AppPaths
from ..core.settings import UpdaterSettings
from ..core.storage import StateStore, StorageDocument
from ..core.versions import is_installed, is_launcher_supported
from ..utils.logger import redact_url
from .downloader import DownloadManager, ResumableDownloader
from .extractor import Extractor
from .patcher import PatchOrchestrator, RunResult, StageProgress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationOutcome:
    success: bool
    error: Optional[CategorizedError] = None
    paused: bool = False
    result: Optional[RunResult] = None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


@dataclass(frozen=True)
class BootstrapInfo:
    release: ReleaseManifest
    patch_manifest: PatchManifest
    client_version: Optional[str]
    launcher_supported: bool

    @property
    def latest_version(self) -> str:
        return self.patch_manifest.latest_version


class UpdateService:
    def __init__(
        self,
        settings: Optional[UpdaterSettings] = None,
        paths: Optional[AppPaths] = None,
        session=None,
        store: Optional[StateStore] = None,
        extractor: Optional[Extractor] = None,
    ):
        self.settings = settings or UpdaterSettings.from_env()
        self.paths = paths or AppPaths.create(self.settings.data_dir)
        self.session = session if session is not None else requests.Session()
        self.store = store or StateStore(self.paths.storage_file)
        self.download_manager = DownloadManager()
        self.downloader = ResumableDownloader(session=self.session, settings=self.settings)
        self.orchestrator = PatchOrchestrator(
            self.store,
            downloader=self.downloader,
            extractor=extractor,
            download_manager=self.download_manager,
            settings=self.settings,
        )
        self.info: Optional[BootstrapInfo] = None

    def _sync_paths(self) -> None:
        install_path = str(self.paths.game_root)
        download_path = str(self.paths.downloads_root)
        custom = str(self.paths.custom_install_dir) if self.paths.custom_install_dir else ""

        doc = self.store.read()
        if (doc.paths.install_path, doc.paths.download_path, doc.paths.custom_install_dir or "") == (
            install_path,
            download_path,
            custom,
        ):
            return

        def _apply(state: StorageDocument) -> None:
            state.paths.install_path = install_path
            state.paths.download_path = download_path
            state.paths.custom_install_dir = custom

        self.store.update(_apply)

    def bootstrap(self) -> BootstrapInfo:
        """Fetch the release and patch manifest and read the installed version.

        Raises :class:`UpdaterError` (network or manifest problems); the
        caller decides how to present them.
        """
        logger.info("Bootstrapping updater from %s", redact_url(self.settings.release_url))
        self.paths.ensure_dirs()
        self._sync_paths()

        release = fetch_release(self.settings.release_url, self.settings, self.session)
        manifest = fetch_patch_manifest(release.patch_manifest_url, self.settings, self.session)
        installed = self.store.read().game_state.installed_version
        client_version = installed if is_installed(installed) else None
        supported = is_launcher_supported(release.minimum_launcher_version, self.settings.launcher_version)
        if not supported:
            logger.warning(
                "Launcher %s is older than the required %s",
                self.settings.launcher_version,
                release.minimum_launcher_version,
            )
        logger.info("Client version: %s, latest: %s", client_version or "not installed", manifest.latest_version)

        self.info = BootstrapInfo(release, manifest, client_version, supported)
        return self.info

    def _ensure_info(self) -> BootstrapInfo:
        return self.info or self.bootstrap()

    def launcher_state(self, error: str = "") -> LauncherState:
        latest = self.info.latest_version if self.info else self.store.read().game_state.available_version
        if self.download_manager.active:
            return LauncherState.DOWNLOADING
        return get_launcher_state(StateContext.from_document(self.store.read(), latest, error))

    def _outcome(self, result: RunResult) -> OperationOutcome:
        return OperationOutcome(success=not result.paused, paused=result.paused, result=result)

    def _failure(self, action: str, error: Exception) -> OperationOutcome:
        categorized = classify(error)
        logger.error(
            "%s failed [%s/%s]: %s",
            action,
            categorized.category.value,
            categorized.severity.value,
            categorized.technical_message,
        )
        return OperationOutcome(success=False, error=categorized)

    def install_base_game(
        self,
        on_download_progress: Optional[StageProgress] = None,
        on_extract_progress: Optional[StageProgress] = None,
    ) -> OperationOutcome:
        try:
            info = self._ensure_info()
            result = self.orchestrator.install_base_game(
                info.release,
                self.paths.game_root,
                self.paths.downloads_root,
                on_download_progress,
                on_extract_progress,
            )
        except (UpdaterError, OSError, requests.RequestException) as e:
            return self._failure("Base game install", e)
        return self._outcome(result)

    def apply_patches(
        self,
        on_download_progress: Optional[StageProgress] = None,
        on_extract_progress: Optional[StageProgress] = None,
    ) -> OperationOutcome:
        try:
            info = self._ensure_info()
            result = self.orchestrator.apply_patches(
                info.patch_manifest,
                self.paths.game_root,
                self.paths.downloads_root,
                on_download_progress,
                on_extract_progress,
            )
        except (UpdaterError, OSError, requests.RequestException) as e:
            return self._failure("Patching", e)
        return self._outcome(result)

    def pause(self) -> bool:
        return self.download_manager.pause()

    def clear_downloads(self) -> int:
        """Delete downloaded archives and forget download progress.

        Only top-level files are removed. ``installedVersion`` is untouched.
        Returns the number of files deleted.
        """
        if self.download_manager.active:
            raise UpdaterError("Cannot clear downloads while a download is in progress; pause it first")

        downloads = self.paths.downloads_root
        removed = 0
        if downloads.is_dir():
            for entry in downloads.iterdir():
                if entry.is_file():
                    entry.unlink()
                    removed += 1

        def _apply(doc: StorageDocument) -> None:
            doc.game_state.download_progress = None
            doc.game_state.base_game.is_downloaded = False
            doc.game_state.patches.downloaded_version = ""

        self.store.update(_apply)
        logger.info("Cleared %s file(s) from %s", removed, downloads)
        return removed
