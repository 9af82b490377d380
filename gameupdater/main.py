"""Command line entry point for the game updater."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import replace
from typing import Callable

from .core.error_classifier import classify, format_error_for_user
from .core.errors import UpdaterError
from .core.launcher_state import button_label
from .core.paths import AppPaths
from .core.settings import UpdaterSettings
from .updater.service import OperationOutcome, UpdateService
from .utils.logger import configure_logging

logger = logging.getLogger(__name__)


def _print_progress(stage: str, current: int, total: int) -> None:
    if total:
        percent = int(current * 100 / total)
        print(f"\r[{stage}] {percent:3d}% ({current}/{total})", end="", flush=True)
    else:
        print(f"\r[{stage}] {current}", end="", flush=True)


def _run_interruptible(service: UpdateService, operation: Callable[[], OperationOutcome]) -> OperationOutcome:
    """Run ``operation`` on a worker thread; Ctrl+C pauses the download."""
    outcomes: list[OperationOutcome] = []
    failures: list[Exception] = []

    def _target() -> None:
        try:
            outcomes.append(operation())
        except Exception as e:
            failures.append(e)

    worker = threading.Thread(target=_target, daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            print("\nPausing download...", flush=True)
            service.pause()
    print()
    if failures:
        # Surface worker errors on the calling thread.
        raise failures[0]
    return outcomes[0]


def _report(outcome: OperationOutcome, action: str) -> int:
    if outcome.paused:
        print(f"{action} paused. Run the same command again to resume.")
        return 0
    if outcome.success:
        print(f"{action} completed.")
        return 0
    print(format_error_for_user(outcome.error), file=sys.stderr)
    return 1 if outcome.retryable else 2


def _cmd_status(service: UpdateService, _args) -> int:
    info = service.bootstrap()
    state = service.launcher_state()
    print(f"Installed version: {info.client_version or 'not installed'}")
    print(f"Latest version:    {info.latest_version}")
    print(f"Launcher state:    {state.value} ({button_label(state)})")
    if not info.launcher_supported:
        print(
            f"This launcher ({service.settings.launcher_version}) is older than the required "
            f"{info.release.minimum_launcher_version}; please update it."
        )
    return 0


def _cmd_install(service: UpdateService, _args) -> int:
    outcome = _run_interruptible(service, lambda: service.install_base_game(_print_progress, _print_progress))
    return _report(outcome, "Installation")


def _cmd_update(service: UpdateService, _args) -> int:
    outcome = _run_interruptible(service, lambda: service.apply_patches(_print_progress, _print_progress))
    if outcome.success and outcome.result and not outcome.result.up_to_date:
        print(
            f"Reached {outcome.result.installed_version}; no patch continues to "
            f"{outcome.result.target_version} yet."
        )
    return _report(outcome, "Update")


def _cmd_clear_downloads(service: UpdateService, _args) -> int:
    removed = service.clear_downloads()
    print(f"Removed {removed} downloaded file(s).")
    return 0


COMMANDS = {
    "status": _cmd_status,
    "install": _cmd_install,
    "update": _cmd_update,
    "clear-downloads": _cmd_clear_downloads,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gameupdater", description="Install and patch the game client")
    parser.add_argument("--debug", action="store_true", help="verbose console and file logging")
    parser.add_argument("--data-dir", default="", help="override the per-user data directory")
    parser.add_argument("--install-dir", default="", help="custom base directory for Game/ and Downloads/")
    parser.add_argument("--release-url", default="", help="override the release document URL")
    parser.add_argument("command", choices=sorted(COMMANDS))
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    settings = UpdaterSettings.from_env()
    if args.release_url:
        settings = replace(settings, release_url=args.release_url)
    paths = AppPaths.create(args.data_dir or settings.data_dir, args.install_dir)
    configure_logging(args.debug, paths.logs_root)

    service = UpdateService(settings=settings, paths=paths)
    try:
        return COMMANDS[args.command](service, args)
    except (UpdaterError, OSError) as e:
        logger.error("Command %s failed: %s", args.command, e)
        print(format_error_for_user(classify(e)), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
