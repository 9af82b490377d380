"""Base game install and patch chain application.

Every step follows the same shape: download (or reuse) an archive, verify its
checksum, extract it, verify the extraction, then persist the new version.
A failing step removes the archive and reverts its "downloaded" marker so a
retry starts that step from scratch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import unquote, urlsplit

from ..core.errors import (
    ChecksumMismatchError,
    ConfigurationError,
    ExtractionError,
    ExtractionVerificationError,
    UpdaterError,
)
from ..core.hashing import verify_sha256
from ..core.manifest import BaseGame, Patch, PatchManifest, ReleaseManifest
from ..core.paths import has_required_game_files
from ..core.settings import UpdaterSettings
from ..core.storage import DownloadProgress, StateStore, StorageDocument, now_ms
from ..core.versions import NOT_INSTALLED, is_installed
from ..utils.disk import ensure_free_space
from ..utils.logger import redact_url
from .downloader import DownloadManager, DownloadResult, ResumableDownloader, on_disk_size
from .extractor import ExtractProgress, Extractor, ZipExtractor
from .states import (
    Advanced,
    Downloading,
    Extracting,
    Failed,
    Idle,
    PatchState,
    Stalled,
    StateTracker,
    Verifying,
    VerifyingExtraction,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
StageProgress = Callable[[str, int, int], None]

BASE_GAME_ID = "base"


@dataclass(frozen=True)
class RunResult:
    installed_version: str
    target_version: str
    applied: tuple[str, ...] = ()
    paused: bool = False

    @property
    def up_to_date(self) -> bool:
        return self.installed_version == self.target_version


def archive_name(url: str, fallback: str) -> str:
    name = Path(unquote(urlsplit(url).path)).name
    return name or fallback


def _chain_reaches(manifest: PatchManifest, start: str) -> bool:
    version = start
    seen = set()
    while version != manifest.latest_version:
        if version in seen:
            return False
        seen.add(version)
        patch = manifest.find_from(version)
        if patch is None:
            return False
        version = patch.to_version
    return True


def find_recovery_version(manifest: PatchManifest) -> Optional[str]:
    """Guess the installed version of a client whose state was lost.

    Candidates are ``from`` versions whose chain reaches ``latest_version``.
    The root of that chain (a candidate no other candidate patches into) is
    the oldest plausible version, so applying from it never skips a patch.
    Returns None when nothing reaches the latest version and raises
    :class:`ConfigurationError` when several unrelated chains do.
    """
    candidates: list[str] = []
    for patch in manifest.patches:
        if patch.from_version not in candidates and _chain_reaches(manifest, patch.from_version):
            candidates.append(patch.from_version)
    if not candidates:
        return None

    targets = {p.to_version for p in manifest.patches if p.from_version in candidates}
    roots = [version for version in candidates if version not in targets]
    if len(roots) == 1:
        return roots[0]
    if not roots:
        return None
    raise ConfigurationError(
        f"Cannot apply patches: installed version is unknown and several patch chains "
        f"({', '.join(roots)}) lead to {manifest.latest_version}; reapply patches manually"
    )


class _ProgressPersister:
    """Writes download progress to the state store at most once per interval."""

    def __init__(self, store: StateStore, interval: float, clock: Callable[[], float]):
        self.store = store
        self.interval = interval
        self.clock = clock
        self._last = clock()

    def __call__(self, downloaded: int, total: int) -> None:
        now = self.clock()
        if now - self._last < self.interval:
            return
        self._last = now
        try:
            self.store.update_download_bytes(downloaded, total)
        except OSError as e:
            logger.warning("Could not persist download progress: %s", e)


def _delete_archive(path: Path) -> None:
    try:
        path.unlink()
        logger.info("Deleted archive %s", path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to delete archive %s: %s", path, e)


class PatchOrchestrator:
    def __init__(
        self,
        store: StateStore,
        downloader: Optional[ResumableDownloader] = None,
        extractor: Optional[Extractor] = None,
        download_manager: Optional[DownloadManager] = None,
        settings: Optional[UpdaterSettings] = None,
        clock: Callable[[], float] = time.monotonic,
        on_state: Optional[Callable[[PatchState], None]] = None,
    ):
        self.store = store
        self.settings = settings or UpdaterSettings()
        self.downloader = downloader or ResumableDownloader(settings=self.settings)
        self.extractor = extractor or ZipExtractor()
        self.download_manager = download_manager or DownloadManager()
        self.clock = clock
        self.tracker = StateTracker(on_state)

    # --------------------------
    # Persisted state helpers
    # --------------------------
    def _set_installed(self, version: str) -> None:
        def _apply(doc: StorageDocument) -> None:
            doc.game_state.installed_version = version

        self.store.update(_apply)

    def _set_patch_downloaded(self, version: str) -> None:
        def _apply(doc: StorageDocument) -> None:
            doc.game_state.patches.downloaded_version = version

        self.store.update(_apply)

    def _set_base_flags(self, *, downloaded: Optional[bool] = None, extracted: Optional[bool] = None) -> None:
        def _apply(doc: StorageDocument) -> None:
            if downloaded is not None:
                doc.game_state.base_game.is_downloaded = downloaded
            if extracted is not None:
                doc.game_state.base_game.is_extracted = extracted

        self.store.update(_apply)

    def _has_pending_download(self, url: str, dest: Path) -> bool:
        saved = self.store.get_download_progress()
        return saved is not None and saved.url == url and Path(saved.dest_path) == dest and dest.exists()

    # --------------------------
    # Download step
    # --------------------------
    def _fetch_archive(
        self,
        url: str,
        dest: Path,
        sha256: str,
        expected_size: Optional[int],
        on_progress: Optional[Callable[[int, int], None]],
    ) -> DownloadResult:
        saved = self.store.get_download_progress()
        if saved is not None and saved.url == url and Path(saved.dest_path) == dest and dest.exists():
            resume_from = on_disk_size(dest)
            logger.info("Resuming %s from %s bytes", dest.name, resume_from)
            progress = saved
            progress.is_paused = False
        else:
            resume_from = 0
            progress = DownloadProgress(
                url=url,
                dest_path=str(dest),
                total_bytes=expected_size or 0,
                sha256=sha256,
                started_at=now_ms(),
            )

        if expected_size:
            ensure_free_space(dest.parent, expected_size - resume_from, self.settings.free_space_margin_bytes)

        progress.bytes_downloaded = resume_from
        self.store.save_download_progress(progress)
        persist = _ProgressPersister(self.store, self.settings.progress_persist_interval_sec, self.clock)

        def _progress(downloaded: int, total: int) -> None:
            persist(downloaded, total)
            if on_progress:
                on_progress(downloaded, total)

        controller = self.download_manager.begin()
        try:
            result = self.downloader.download(
                url,
                dest,
                resume_from=resume_from,
                expected_size=expected_size,
                on_progress=_progress,
                controller=controller,
            )
        except (UpdaterError, OSError) as e:
            logger.error("Download of %s to %s failed: %s", redact_url(url), dest, e)
            _delete_archive(dest)
            self.store.clear_download_progress()
            raise
        finally:
            self.download_manager.release(controller)

        if result.was_paused:
            self.store.update_download_bytes(result.bytes_downloaded, result.total_bytes)
            self.store.set_download_paused(True)
            return result

        self.store.clear_download_progress()
        return result

    def _fail(self, target: str, error: Exception) -> None:
        self.tracker.to(Failed(target=target, reason=str(error)))

    # --------------------------
    # Patch chain
    # --------------------------
    def resolve_installed_version(self, manifest: PatchManifest, install_dir: PathLike) -> str:
        installed = self.store.read().game_state.installed_version
        if is_installed(installed):
            return installed

        if not has_required_game_files(install_dir, self.settings.required_game_files):
            raise ConfigurationError(
                "No client version found. Cannot apply patches: no game files are installed; reinstall the game"
            )
        recovered = find_recovery_version(manifest)
        if recovered is None:
            raise ConfigurationError(
                f"No client version found. Cannot apply patches: no patch chain leads to "
                f"{manifest.latest_version}; reapply patches manually"
            )
        logger.warning("Installed version unknown but game files present; recovered version %s", recovered)
        self._set_installed(recovered)
        return recovered

    def apply_patches(
        self,
        manifest: PatchManifest,
        install_dir: PathLike,
        downloads_dir: PathLike,
        on_download_progress: Optional[StageProgress] = None,
        on_extract_progress: Optional[StageProgress] = None,
    ) -> RunResult:
        """Apply patches until the client reaches ``manifest.latest_version``.

        Stops quietly (Stalled) when no patch starts at the current version,
        and returns a paused result if the download was paused. Whatever
        happens, ``availableVersion`` is set to the manifest's latest version.
        """
        install_dir = Path(install_dir)
        downloads_dir = Path(downloads_dir)
        latest = manifest.latest_version
        applied: list[str] = []

        try:
            installed = self.resolve_installed_version(manifest, install_dir)
            self.tracker.start(installed)
            visited = {installed}

            while installed != latest:
                patch = manifest.find_from(installed)
                if patch is None:
                    logger.warning("No patch from %s towards %s; client is not fully updated", installed, latest)
                    self.tracker.to(Stalled(version=installed))
                    break
                if patch.to_version in visited:
                    raise ConfigurationError(f"Cannot apply patches: patch chain loops back to {patch.to_version}")

                if not self._apply_patch(patch, install_dir, downloads_dir, on_download_progress, on_extract_progress):
                    return RunResult(installed, latest, tuple(applied), paused=True)

                installed = patch.to_version
                visited.add(installed)
                applied.append(installed)
                if installed != latest:
                    self.tracker.to(Idle(version=installed))

            return RunResult(installed, latest, tuple(applied))
        finally:
            def _available(doc: StorageDocument) -> None:
                doc.game_state.available_version = latest

            self.store.update(_available)

    def _apply_patch(
        self,
        patch: Patch,
        install_dir: Path,
        downloads_dir: Path,
        on_download_progress: Optional[StageProgress],
        on_extract_progress: Optional[StageProgress],
    ) -> bool:
        target = patch.to_version
        archive = downloads_dir / archive_name(patch.url, f"patch-{patch.from_version}-{target}.zip")
        previous_marker = self.store.read().game_state.patches.downloaded_version
        logger.info("Applying patch %s", patch.label)

        self.tracker.to(Downloading(target=target))
        if archive.exists() and not self._has_pending_download(patch.url, archive):
            # Trust the existing file for now; the checksum below catches stale leftovers.
            logger.info("Patch archive %s already present; skipping download", archive.name)
        else:
            def _download_progress(current: int, total: int) -> None:
                if on_download_progress:
                    on_download_progress(target, current, total)

            try:
                result = self._fetch_archive(patch.url, archive, patch.sha256, patch.size_bytes, _download_progress)
            except (UpdaterError, OSError) as e:
                self._fail(target, e)
                raise
            if result.was_paused:
                return False
        self._set_patch_downloaded(target)

        def _revert() -> None:
            self._set_patch_downloaded(previous_marker)

        self._verify_or_discard(archive, patch.sha256, target, f"patch {target}", _revert)

        def _extract_progress(current: int, total: int) -> None:
            if on_extract_progress:
                on_extract_progress(target, current, total)

        self._extract_or_discard(
            archive,
            install_dir,
            target,
            f"patch {target}",
            self.settings.patch_min_files,
            _extract_progress,
            _revert,
        )

        def _advance(doc: StorageDocument) -> None:
            doc.game_state.patches.applied_version = target
            doc.game_state.installed_version = target

        self.store.update(_advance)
        self.tracker.to(Advanced(version=target))
        logger.info("Patch %s applied", patch.label)
        return True

    # --------------------------
    # Shared verify / extract steps
    # --------------------------
    def _verify_or_discard(self, archive: Path, sha256: str, target: str, what: str, revert: Callable[[], None]) -> None:
        self.tracker.to(Verifying(target=target))
        try:
            ok = verify_sha256(archive, sha256)
        except OSError as e:
            logger.error("Could not read %s for verification: %s", archive, e)
            revert()
            self._fail(target, e)
            raise
        if ok:
            return
        _delete_archive(archive)
        revert()
        error = ChecksumMismatchError(f"SHA256 mismatch for {what}")
        self._fail(target, error)
        raise error

    def _extract_or_discard(
        self,
        archive: Path,
        install_dir: Path,
        target: str,
        what: str,
        min_files: int,
        on_progress: Optional[ExtractProgress],
        revert: Callable[[], None],
    ) -> None:
        self.tracker.to(Extracting(target=target))
        try:
            self.extractor.extract(archive, install_dir, on_progress)
        except (ExtractionError, OSError) as e:
            logger.error("Extraction of %s into %s failed: %s", archive, install_dir, e)
            _delete_archive(archive)
            revert()
            error = ExtractionError(f"Failed to extract {what}: {e}")
            self._fail(target, error)
            raise error from e

        self.tracker.to(VerifyingExtraction(target=target))
        check = self.extractor.verify_extracted(install_dir, min_files)
        if check.success:
            return
        _delete_archive(archive)
        revert()
        error = ExtractionVerificationError(
            f"Extraction verification failed for {what}: found {check.file_count} files, expected at least {min_files}"
        )
        self._fail(target, error)
        raise error

    # --------------------------
    # Base game
    # --------------------------
    def install_base_game(
        self,
        release: Union[ReleaseManifest, BaseGame],
        install_dir: PathLike,
        downloads_dir: PathLike,
        on_download_progress: Optional[StageProgress] = None,
        on_extract_progress: Optional[StageProgress] = None,
    ) -> RunResult:
        game = release.game if isinstance(release, ReleaseManifest) else release
        install_dir = Path(install_dir)
        downloads_dir = Path(downloads_dir)
        archive = downloads_dir / archive_name(game.url, "base-game.zip")
        doc = self.store.read()
        logger.info("Installing base game %s into %s", game.version, install_dir)

        self.tracker.start(doc.game_state.installed_version or NOT_INSTALLED)
        self.tracker.to(Downloading(target=game.version))

        reuse = doc.game_state.base_game.is_downloaded and archive.exists() and not self._has_pending_download(game.url, archive)
        if reuse:
            logger.info("Base game archive %s already downloaded", archive.name)
        else:
            def _download_progress(current: int, total: int) -> None:
                if on_download_progress:
                    on_download_progress(BASE_GAME_ID, current, total)

            try:
                result = self._fetch_archive(game.url, archive, game.sha256, game.size_bytes, _download_progress)
            except (UpdaterError, OSError) as e:
                self._set_base_flags(downloaded=False)
                self._fail(game.version, e)
                raise
            if result.was_paused:
                return RunResult(doc.game_state.installed_version, game.version, paused=True)
            self._set_base_flags(downloaded=True, extracted=False)

        def _revert() -> None:
            self._set_base_flags(downloaded=False, extracted=False)

        self._verify_or_discard(archive, game.sha256, game.version, f"base game {game.version}", _revert)

        def _extract_progress(current: int, total: int) -> None:
            if on_extract_progress:
                on_extract_progress(BASE_GAME_ID, current, total)

        self._extract_or_discard(
            archive,
            install_dir,
            game.version,
            f"base game {game.version}",
            self.settings.base_game_min_files,
            _extract_progress,
            _revert,
        )

        def _installed(state: StorageDocument) -> None:
            state.game_state.base_game.is_extracted = True
            state.game_state.installed_version = game.version

        self.store.update(_installed)
        self.tracker.to(Advanced(version=game.version))
        logger.info("Base game %s installed", game.version)
        return RunResult(game.version, game.version, (game.version,))
