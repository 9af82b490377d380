import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from ..core.paths import AppPaths, default_data_dir

LOG_FILE_NAME = "gameupdater.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def default_log_dir() -> Path:
    return AppPaths(default_data_dir()).logs_root


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(debug: bool, log_dir: Optional[Path] = None) -> logging.Logger:
    """Route updater logs to ``<data dir>/logs/gameupdater.log``.

    Normal runs only keep warnings and errors on disk. ``debug`` adds console
    output and records everything in the file. An unwritable log directory
    never stops the updater; logging just stays off disk.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG if debug else logging.WARNING)
    formatter = logging.Formatter(LOG_FORMAT)

    if debug:
        console = logging.StreamHandler()
        console.setLevel(logging.INFO)
        console.setFormatter(formatter)
        root.addHandler(console)

    target_dir = log_dir or default_log_dir()
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(_file_handler(target_dir / LOG_FILE_NAME, logging.DEBUG if debug else logging.WARNING, formatter))
    except OSError:
        if not debug:
            root.addHandler(logging.NullHandler())

    return root


def redact_url(url: str) -> str:
    """Strip userinfo and query string; signed download URLs carry tokens there."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid url>"
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    query = "<redacted>" if parts.query else ""
    return urlunsplit((parts.scheme, host, parts.path, query, ""))
