from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .storage import StorageDocument
from .versions import is_installed


class LauncherState(Enum):
    MISSING = "missing"
    OUTDATED = "outdated"
    LATEST = "latest"
    DOWNLOADING = "downloading"
    UPDATING = "updating"
    ERROR = "error"


_BUTTON_LABELS = {
    LauncherState.MISSING: "Download",
    LauncherState.OUTDATED: "Update",
    LauncherState.LATEST: "Play",
    LauncherState.DOWNLOADING: "Downloading...",
    LauncherState.UPDATING: "Updating...",
    LauncherState.ERROR: "Error",
}


@dataclass(frozen=True)
class StateContext:
    client_version: Optional[str]
    latest_version: str
    base_game_downloaded: bool
    base_game_extracted: bool
    error: str = ""

    @classmethod
    def from_document(cls, document: StorageDocument, latest_version: str, error: str = "") -> "StateContext":
        state = document.game_state
        client = state.installed_version if is_installed(state.installed_version) else None
        return cls(
            client_version=client,
            latest_version=latest_version,
            base_game_downloaded=state.base_game.is_downloaded,
            base_game_extracted=state.base_game.is_extracted,
            error=error,
        )


def get_launcher_state(ctx: StateContext) -> LauncherState:
    if ctx.error:
        return LauncherState.ERROR
    if not ctx.base_game_downloaded:
        return LauncherState.MISSING
    if ctx.client_version == ctx.latest_version:
        return LauncherState.LATEST
    if ctx.base_game_extracted:
        return LauncherState.OUTDATED
    return LauncherState.MISSING


def button_label(state: LauncherState) -> str:
    return _BUTTON_LABELS[state]
