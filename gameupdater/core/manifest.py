"""Release and patch manifest models, parsing and fetching."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests  # type: ignore[import-untyped]

from .errors import ManifestError, NetworkError
from .settings import UpdaterSettings
from ..utils.logger import redact_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BaseGame:
    version: str
    url: str
    sha256: str
    size_bytes: int


@dataclass(frozen=True)
class ReleaseManifest:
    minimum_launcher_version: str
    game: BaseGame
    patch_manifest_url: str
    patch_notes_url: str = ""


@dataclass(frozen=True)
class Patch:
    from_version: str
    to_version: str
    url: str
    sha256: str
    size_bytes: Optional[int] = None

    @property
    def label(self) -> str:
        return f"{self.from_version} -> {self.to_version}"


@dataclass(frozen=True)
class PatchManifest:
    latest_version: str
    patches: tuple[Patch, ...] = ()

    def find_from(self, version: str) -> Optional[Patch]:
        for patch in self.patches:
            if patch.from_version == version:
                return patch
        return None


def _require_str(data: dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ManifestError(f"Invalid manifest: {where}.{key} must be a non-empty string")
    return value


def _optional_size(data: dict[str, Any], key: str, where: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ManifestError(f"Invalid manifest: {where}.{key} must be a non-negative integer")
    return value


def parse_release(data: Any) -> ReleaseManifest:
    if not isinstance(data, dict):
        raise ManifestError("Invalid manifest: release document must be an object")
    game = data.get("game")
    if not isinstance(game, dict):
        raise ManifestError("Invalid manifest: release.game must be an object")

    # Older release documents name the size field zipSizeBytes.
    size = _optional_size(game, "sizeBytes", "game")
    if size is None:
        size = _optional_size(game, "zipSizeBytes", "game")
    if size is None:
        raise ManifestError("Invalid manifest: game.sizeBytes is required")

    notes = data.get("patchNotesUrl") or ""
    if not isinstance(notes, str):
        raise ManifestError("Invalid manifest: release.patchNotesUrl must be a string")

    return ReleaseManifest(
        minimum_launcher_version=str(data.get("minimumLauncherVersion") or ""),
        game=BaseGame(
            version=_require_str(game, "baseVersion", "game"),
            url=_require_str(game, "fullUrl", "game"),
            sha256=_require_str(game, "sha256", "game").lower(),
            size_bytes=size,
        ),
        patch_manifest_url=_require_str(data, "patchManifestUrl", "release"),
        patch_notes_url=notes,
    )


def parse_patch_manifest(data: Any) -> PatchManifest:
    if not isinstance(data, dict):
        raise ManifestError("Invalid manifest: patch manifest must be an object")
    latest = _require_str(data, "latestVersion", "manifest")
    raw_patches = data.get("patches") or []
    if not isinstance(raw_patches, list):
        raise ManifestError("Invalid manifest: manifest.patches must be a list")

    patches: list[Patch] = []
    seen: set[tuple[str, str]] = set()
    for index, raw in enumerate(raw_patches):
        where = f"patches[{index}]"
        if not isinstance(raw, dict):
            raise ManifestError(f"Invalid manifest: {where} must be an object")
        patch = Patch(
            from_version=_require_str(raw, "from", where),
            to_version=_require_str(raw, "to", where),
            url=_require_str(raw, "fullUrl", where),
            sha256=_require_str(raw, "sha256", where).lower(),
            size_bytes=_optional_size(raw, "sizeBytes", where),
        )
        key = (patch.from_version, patch.to_version)
        if key in seen:
            raise ManifestError(f"Invalid manifest: duplicate patch {patch.label}")
        seen.add(key)
        patches.append(patch)

    return PatchManifest(latest_version=latest, patches=tuple(patches))


def fetch_json(url: str, settings: Optional[UpdaterSettings] = None, session=None) -> Any:
    settings = settings or UpdaterSettings()
    http = session or requests
    headers = {"User-Agent": settings.user_agent, "Accept": "application/json"}
    attempts = max(1, int(settings.manifest_retry_attempts))
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            response = http.get(url, headers=headers, timeout=settings.manifest_timeout_sec)
            status = int(response.status_code)
            if status == 429 or status >= 500:
                response.raise_for_status()
            if status >= 400:
                raise NetworkError(f"Failed to fetch: HTTP {status} for {redact_url(url)}")
            try:
                return response.json()
            except ValueError as e:
                raise ManifestError(f"Failed to parse JSON from {redact_url(url)}: {e}") from e
        except requests.RequestException as e:
            last_error = e
            if attempt >= attempts:
                break
            delay = min(2.0, 0.5 * (2 ** (attempt - 1)))
            logger.warning(
                "Manifest request failed (attempt %s/%s): %s. Retrying in %.2fs",
                attempt,
                attempts,
                e,
                delay,
            )
            time.sleep(delay)
    raise NetworkError(f"Network error fetching {redact_url(url)}: {last_error}")


def fetch_release(url: str, settings: Optional[UpdaterSettings] = None, session=None) -> ReleaseManifest:
    release = parse_release(fetch_json(url, settings, session))
    logger.info("Fetched release: base game %s", release.game.version)
    return release


def fetch_patch_manifest(url: str, settings: Optional[UpdaterSettings] = None, session=None) -> PatchManifest:
    manifest = parse_patch_manifest(fetch_json(url, settings, session))
    logger.info("Fetched patch manifest: latest %s, %s patches", manifest.latest_version, len(manifest.patches))
    return manifest
