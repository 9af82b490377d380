from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace

logger = logging.getLogger(__name__)

DEFAULT_RELEASE_URL = "https://updates.example.com/release.json"
LAUNCHER_VERSION = "1.0.0"


@dataclass(frozen=True)
class UpdaterSettings:
    release_url: str = DEFAULT_RELEASE_URL
    launcher_version: str = LAUNCHER_VERSION
    user_agent: str = "GameUpdater/1.0"
    max_retries: int = 5
    retry_base_delay_sec: float = 1.0
    connect_timeout_sec: float = 15.0
    # Read timeout doubles as the idle-connection watchdog.
    idle_timeout_sec: float = 45.0
    max_redirects: int = 10
    chunk_size: int = 64 * 1024
    progress_persist_interval_sec: float = 2.0
    required_game_files: tuple[str, ...] = ("game.exe",)
    base_game_min_files: int = 100
    patch_min_files: int = 1
    free_space_margin_bytes: int = 64 * 1024 * 1024
    manifest_retry_attempts: int = 3
    manifest_timeout_sec: float = 15.0
    data_dir: str = ""
    extra_headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, **overrides) -> "UpdaterSettings":
        settings = cls(**overrides)
        env_release = os.getenv("GAMEUPDATER_RELEASE_URL", "").strip()
        if env_release:
            settings = replace(settings, release_url=env_release)
        env_data_dir = os.getenv("GAMEUPDATER_DATA_DIR", "").strip()
        if env_data_dir:
            settings = replace(settings, data_dir=env_data_dir)

        numeric = {
            "GAMEUPDATER_MAX_RETRIES": ("max_retries", int),
            "GAMEUPDATER_RETRY_BASE_DELAY": ("retry_base_delay_sec", float),
            "GAMEUPDATER_IDLE_TIMEOUT": ("idle_timeout_sec", float),
            "GAMEUPDATER_CONNECT_TIMEOUT": ("connect_timeout_sec", float),
        }
        for env_name, (attr, cast) in numeric.items():
            raw = os.getenv(env_name, "").strip()
            if not raw:
                continue
            try:
                value = cast(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", env_name, raw)
                continue
            if value < 0:
                logger.warning("Ignoring negative %s=%r", env_name, raw)
                continue
            settings = replace(settings, **{attr: value})
        return settings
