"""Tagged states of a single patch (or base game) step.

    Idle -> Downloading -> Verifying -> Extracting -> VerifyingExtraction -> Advanced
    Idle -> Stalled                      (no applicable patch)
    Downloading/Verifying/Extracting/VerifyingExtraction -> Failed(reason)
    Advanced -> Idle                     (next patch)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Optional, Union

logger = logging.getLogger(__name__)


class PatchStage(Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    EXTRACTING = "extracting"
    VERIFYING_EXTRACTION = "verifying_extraction"
    ADVANCED = "advanced"
    FAILED = "failed"
    STALLED = "stalled"


@dataclass(frozen=True)
class Idle:
    version: str
    stage: ClassVar[PatchStage] = PatchStage.IDLE


@dataclass(frozen=True)
class Downloading:
    target: str
    stage: ClassVar[PatchStage] = PatchStage.DOWNLOADING


@dataclass(frozen=True)
class Verifying:
    target: str
    stage: ClassVar[PatchStage] = PatchStage.VERIFYING


@dataclass(frozen=True)
class Extracting:
    target: str
    stage: ClassVar[PatchStage] = PatchStage.EXTRACTING


@dataclass(frozen=True)
class VerifyingExtraction:
    target: str
    stage: ClassVar[PatchStage] = PatchStage.VERIFYING_EXTRACTION


@dataclass(frozen=True)
class Advanced:
    version: str
    stage: ClassVar[PatchStage] = PatchStage.ADVANCED


@dataclass(frozen=True)
class Failed:
    target: str
    reason: str
    stage: ClassVar[PatchStage] = PatchStage.FAILED


@dataclass(frozen=True)
class Stalled:
    version: str
    stage: ClassVar[PatchStage] = PatchStage.STALLED


PatchState = Union[Idle, Downloading, Verifying, Extracting, VerifyingExtraction, Advanced, Failed, Stalled]

_TRANSITIONS: dict[PatchStage, frozenset[PatchStage]] = {
    PatchStage.IDLE: frozenset({PatchStage.DOWNLOADING, PatchStage.STALLED}),
    PatchStage.DOWNLOADING: frozenset({PatchStage.VERIFYING, PatchStage.FAILED}),
    PatchStage.VERIFYING: frozenset({PatchStage.EXTRACTING, PatchStage.FAILED}),
    PatchStage.EXTRACTING: frozenset({PatchStage.VERIFYING_EXTRACTION, PatchStage.FAILED}),
    PatchStage.VERIFYING_EXTRACTION: frozenset({PatchStage.ADVANCED, PatchStage.FAILED}),
    PatchStage.ADVANCED: frozenset({PatchStage.IDLE}),
    PatchStage.FAILED: frozenset(),
    PatchStage.STALLED: frozenset(),
}


class StateTracker:
    def __init__(self, on_state: Optional[Callable[[PatchState], None]] = None):
        self._on_state = on_state
        self.current: Optional[PatchState] = None
        self.history: list[PatchState] = []

    def start(self, version: str) -> None:
        """Begin a new run at Idle regardless of how the previous run ended."""
        self.history = []
        self._emit(Idle(version))

    def to(self, state: PatchState) -> None:
        if self.current is None:
            raise RuntimeError("State tracker used before start()")
        allowed = _TRANSITIONS[self.current.stage]
        if state.stage not in allowed:
            raise RuntimeError(f"Illegal patch state transition {self.current.stage.value} -> {state.stage.value}")
        self._emit(state)

    def _emit(self, state: PatchState) -> None:
        logger.debug("Patch state: %s", state)
        self.current = state
        self.history.append(state)
        if self._on_state:
            self._on_state(state)
