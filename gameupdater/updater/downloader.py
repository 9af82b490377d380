"""Resumable, cancellable HTTP downloads.

Only one download is active at a time: :class:`DownloadManager` hands out a
:class:`DownloadController` per transfer and cancels the previous one when a
new transfer begins. Pausing is cooperative and never reported as an error;
the bytes already received stay on disk and the next attempt resumes from the
file's actual size.
"""

from __future__ import annotations

import logging
import os
import re
import socket
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import requests  # type: ignore[import-untyped]

from ..core.errors import NetworkError, SizeMismatchError
from ..core.settings import UpdaterSettings
from ..utils.logger import redact_url

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_CONTENT_RANGE_RE = re.compile(r"^\s*bytes\s+(\d+)-(\d+)/(\d+|\*)\s*$", re.I)
_UNSATISFIED_RANGE_RE = re.compile(r"^\s*bytes\s+\*/(\d+)\s*$", re.I)


class IncompleteTransferError(requests.ConnectionError):
    """The body ended before the announced size was received."""


# Failures worth another attempt. A user pause is never one of these: it is
# checked before any retry decision is made.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
    ConnectionResetError,
    TimeoutError,
)


@dataclass(frozen=True)
class DownloadResult:
    completed: bool
    bytes_downloaded: int
    total_bytes: int
    was_paused: bool


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    base_delay_sec: float = 1.0

    def delay_for(self, retry_number: int) -> float:
        """Backoff before retry ``retry_number`` (1-based): 1s, 2s, 4s, ..."""
        return self.base_delay_sec * (2 ** max(0, retry_number - 1))

    def attempts(self) -> range:
        return range(self.max_retries + 1)


def _response_socket(response):
    raw = getattr(response, "raw", None)
    sock = getattr(getattr(raw, "_connection", None), "sock", None)
    if sock is None:
        # http.client response -> BufferedReader -> SocketIO -> socket
        fp = getattr(getattr(raw, "_fp", None), "fp", None)
        sock = getattr(getattr(fp, "raw", None), "_sock", None)
    return sock


def _abort_connection(response) -> None:
    sock = _response_socket(response)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug("Socket shutdown on cancel failed: %s", e)


class DownloadController:
    """Cancellation handle for a single transfer."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._response = None
        self.superseded = False

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            response = self._response
        if response is not None:
            # close() alone leaves a reader blocked in recv() until the read
            # timeout; shutting the socket down wakes it immediately.
            _abort_connection(response)
            try:
                response.close()
            except (OSError, requests.RequestException) as e:
                logger.debug("Closing in-flight response failed: %s", e)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        return self._event.wait(max(0.0, seconds))

    def attach(self, response) -> None:
        with self._lock:
            self._response = response

    def detach(self) -> None:
        with self._lock:
            self._response = None


class DownloadManager:
    """Owns the controller of the single active download."""

    def __init__(self):
        self._lock = threading.Lock()
        self._current: Optional[DownloadController] = None

    def begin(self) -> DownloadController:
        controller = DownloadController()
        with self._lock:
            previous, self._current = self._current, controller
        if previous is not None:
            logger.info("New download started; cancelling the previous one")
            previous.superseded = True
            previous.cancel()
        return controller

    def release(self, controller: DownloadController) -> None:
        with self._lock:
            if self._current is controller:
                self._current = None

    def pause(self) -> bool:
        with self._lock:
            current = self._current
        if current is None:
            return False
        logger.info("Pausing active download")
        current.cancel()
        return True

    @property
    def active(self) -> bool:
        with self._lock:
            return self._current is not None


def on_disk_size(path: Union[str, Path]) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def _header(response, name: str) -> str:
    return str(response.headers.get(name) or "")


def determine_total(response, offset: int) -> int:
    """Total size of the resource; Content-Range wins over Content-Length when resuming."""
    if offset > 0:
        content_range = _header(response, "Content-Range")
        match = _CONTENT_RANGE_RE.match(content_range)
        if match:
            start = int(match.group(1))
            if start != offset:
                raise NetworkError(
                    f"HTTP 206 returned range starting at {start}, expected {offset}"
                )
            if match.group(3) != "*":
                return int(match.group(3))
    length = _header(response, "Content-Length")
    if length.isdigit():
        return offset + int(length)
    return 0


class ResumableDownloader:
    def __init__(
        self,
        session=None,
        settings: Optional[UpdaterSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.settings = settings or UpdaterSettings()
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=self.settings.max_retries,
            base_delay_sec=self.settings.retry_base_delay_sec,
        )
        self.session = session if session is not None else requests.Session()
        self.session.max_redirects = self.settings.max_redirects

    def _paused(self, dest: Path, total: int) -> DownloadResult:
        downloaded = on_disk_size(dest)
        logger.info("Download paused at %s/%s bytes: %s", downloaded, total, dest)
        return DownloadResult(completed=False, bytes_downloaded=downloaded, total_bytes=total, was_paused=True)

    def download(
        self,
        url: str,
        dest: Union[str, Path],
        *,
        resume_from: int = 0,
        expected_size: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        controller: Optional[DownloadController] = None,
    ) -> DownloadResult:
        """Download ``url`` to ``dest``, resuming from ``resume_from`` when possible.

        Returns a paused result if ``controller`` is cancelled. Raises
        :class:`NetworkError` for non-retryable failures or when retries are
        exhausted, and :class:`SizeMismatchError` when the server disagrees
        with ``expected_size``.
        """
        controller = controller or DownloadController()
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        known_total = expected_size or 0

        # Never trust an offset beyond what is actually on disk.
        offset = min(max(0, resume_from), on_disk_size(dest)) if dest.exists() else 0
        last_error: Optional[BaseException] = None

        for attempt in self.retry_policy.attempts():
            if controller.cancelled:
                return self._paused(dest, known_total)
            if attempt > 0:
                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    "Download attempt failed (retry %s/%s): %s. Retrying in %.1fs",
                    attempt,
                    self.retry_policy.max_retries,
                    last_error,
                    delay,
                )
                if controller.wait(delay):
                    return self._paused(dest, known_total)
                offset = on_disk_size(dest)

            try:
                return self._attempt(url, dest, offset, expected_size, on_progress, controller)
            except TRANSIENT_ERRORS as e:
                if controller.cancelled:
                    return self._paused(dest, known_total)
                last_error = e

        logger.error(
            "Download of %s to %s failed after %s retries: %s",
            redact_url(url),
            dest,
            self.retry_policy.max_retries,
            last_error,
        )
        raise NetworkError(
            f"Network error: download failed after {self.retry_policy.max_retries} retries: {last_error}"
        )

    def _open(self, url: str, offset: int):
        headers = {"User-Agent": self.settings.user_agent, **self.settings.extra_headers}
        if offset > 0:
            headers["Range"] = f"bytes={offset}-"
        timeout = (self.settings.connect_timeout_sec, self.settings.idle_timeout_sec)
        try:
            return self.session.get(url, headers=headers, stream=True, timeout=timeout)
        except requests.TooManyRedirects as e:
            raise NetworkError(
                f"Too many redirects (> {self.settings.max_redirects}) for {redact_url(url)}"
            ) from e
        except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema, requests.exceptions.InvalidSchema) as e:
            raise NetworkError(f"Invalid download URL {redact_url(url)}: {e}") from e

    def _attempt(
        self,
        url: str,
        dest: Path,
        offset: int,
        expected_size: Optional[int],
        on_progress: Optional[ProgressCallback],
        controller: DownloadController,
    ) -> DownloadResult:
        logger.info("Downloading %s -> %s (offset %s)", redact_url(url), dest, offset)
        with self._open(url, offset) as response:
            controller.attach(response)
            try:
                status = int(response.status_code)
                if status == 416 and offset > 0:
                    return self._range_not_satisfiable(response, url, offset, expected_size, on_progress)
                if status not in (200, 206):
                    raise NetworkError(f"HTTP {status} downloading {redact_url(url)}")

                resuming = status == 206 and offset > 0
                if offset > 0 and not resuming:
                    logger.info("Server ignored range request; restarting %s from zero", dest)
                start = offset if resuming else 0

                total = determine_total(response, start)
                if expected_size and total and total != expected_size:
                    logger.error(
                        "Size mismatch for %s: expected %s bytes, server reports %s",
                        redact_url(url),
                        expected_size,
                        total,
                    )
                    raise SizeMismatchError(
                        f"Size mismatch: expected {expected_size} bytes, server reports {total} bytes"
                    )
                if not total and expected_size:
                    total = expected_size

                downloaded = self._stream_body(response, dest, resuming, start, total, on_progress, controller)
            finally:
                controller.detach()

        if controller.cancelled:
            return self._paused(dest, total)
        if total and downloaded < total:
            raise IncompleteTransferError(f"Connection closed after {downloaded} of {total} bytes")
        if total and downloaded > total:
            raise SizeMismatchError(f"Size mismatch: received {downloaded} bytes, expected {total} bytes")

        total = total or downloaded
        if on_progress:
            on_progress(total, total)
        logger.info("Download complete: %s (%s bytes)", dest, total)
        return DownloadResult(completed=True, bytes_downloaded=downloaded, total_bytes=total, was_paused=False)

    def _stream_body(
        self,
        response,
        dest: Path,
        resuming: bool,
        start: int,
        total: int,
        on_progress: Optional[ProgressCallback],
        controller: DownloadController,
    ) -> int:
        downloaded = start
        if on_progress:
            on_progress(downloaded, total)
        # Leaving this block closes (and flushes) the file, including on pause.
        with open(dest, "ab" if resuming else "wb") as f:
            try:
                for chunk in response.iter_content(chunk_size=self.settings.chunk_size):
                    if controller.cancelled:
                        break
                    if not chunk:
                        continue
                    f.write(chunk)
                    downloaded += len(chunk)
                    if on_progress:
                        on_progress(downloaded, total)
            except (requests.RequestException, OSError, ValueError, AttributeError):
                # A closed or shut down connection surfaces as a read error;
                # that is a pause.
                if not controller.cancelled:
                    raise
        return downloaded

    def _range_not_satisfiable(
        self,
        response,
        url: str,
        offset: int,
        expected_size: Optional[int],
        on_progress: Optional[ProgressCallback],
    ) -> DownloadResult:
        match = _UNSATISFIED_RANGE_RE.match(_header(response, "Content-Range"))
        total = int(match.group(1)) if match else (expected_size or 0)
        if total and offset == total:
            logger.info("Range not satisfiable but file already complete: %s bytes", total)
            if on_progress:
                on_progress(total, total)
            return DownloadResult(completed=True, bytes_downloaded=total, total_bytes=total, was_paused=False)
        raise NetworkError(
            f"HTTP 416 downloading {redact_url(url)}: local file has {offset} bytes, server reports {total}"
        )
