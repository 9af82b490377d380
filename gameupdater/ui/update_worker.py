"""Worker threads that run update operations off the UI thread."""

import logging

from PyQt6.QtCore import QThread, pyqtSignal

from ..core.error_classifier import classify, format_error_for_user
from ..core.errors import UpdaterError

logger = logging.getLogger(__name__)


class UpdateCheckWorker(QThread):
    """Fetch release information and report the launcher state."""

    check_completed = pyqtSignal(str, str, str)  # launcher state, latest version, error

    def __init__(self, service):
        super().__init__()
        self.service = service

    def run(self):
        try:
            info = self.service.bootstrap()
            state = self.service.launcher_state()
            self.check_completed.emit(state.value, info.latest_version, "")
        except (UpdaterError, OSError) as e:
            logger.error("Update check failed: %s", e)
            self.check_completed.emit("error", "", format_error_for_user(classify(e)))


class _OperationWorker(QThread):
    download_progress = pyqtSignal(str, int, int)  # stage or patch id, current, total
    extract_progress = pyqtSignal(str, int, int)
    operation_completed = pyqtSignal(bool, bool, str)  # success, retryable, message

    action = ""

    def __init__(self, service):
        super().__init__()
        self.service = service

    def _perform(self, on_download, on_extract):
        raise NotImplementedError

    def pause(self) -> bool:
        return self.service.pause()

    def run(self):
        def on_download(stage, current, total):
            self.download_progress.emit(stage, current, total)

        def on_extract(stage, current, total):
            self.extract_progress.emit(stage, current, total)

        outcome = self._perform(on_download, on_extract)
        if outcome.paused:
            self.operation_completed.emit(False, True, f"{self.action} paused.")
        elif outcome.success:
            self.operation_completed.emit(True, False, f"{self.action} completed successfully.")
        else:
            self.operation_completed.emit(False, outcome.retryable, format_error_for_user(outcome.error))


class InstallWorker(_OperationWorker):
    action = "Installation"

    def _perform(self, on_download, on_extract):
        return self.service.install_base_game(on_download, on_extract)


class PatchWorker(_OperationWorker):
    action = "Update"

    def _perform(self, on_download, on_extract):
        return self.service.apply_patches(on_download, on_extract)
