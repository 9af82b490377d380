import hashlib
import logging
from types import SimpleNamespace

import pytest

from gameupdater import main as cli
from gameupdater.core.error_classifier import ErrorCategory
from gameupdater.core.errors import UpdaterError
from gameupdater.core.launcher_state import LauncherState
from gameupdater.core.paths import AppPaths
from gameupdater.core.settings import UpdaterSettings
from gameupdater.updater import service as service_module
from gameupdater.updater.service import UpdateService
from gameupdater.utils import disk

RELEASE_URL = "https://updates.example.invalid/release.json"
MANIFEST_URL = "https://updates.example.invalid/patches.json"
CDN = "https://cdn.example.invalid"


def _sha(data):
    return hashlib.sha256(data).hexdigest()


def _publish(session, make_zip, base_sha=None):
    base = make_zip({"game.exe": "MZ", "data/base.pak": "base"})
    patch = make_zip({"data/patch.pak": "patch"})
    session.add_file(f"{CDN}/full.zip", base)
    session.add_file(f"{CDN}/patch-2.1.0-2.2.0.zip", patch)
    session.add_json(
        RELEASE_URL,
        {
            "minimumLauncherVersion": "1.0.0",
            "game": {
                "baseVersion": "2.1.0",
                "fullUrl": f"{CDN}/full.zip",
                "sha256": base_sha or _sha(base),
                "sizeBytes": len(base),
            },
            "patchManifestUrl": MANIFEST_URL,
        },
    )
    session.add_json(
        MANIFEST_URL,
        {
            "latestVersion": "2.2.0",
            "patches": [
                {"from": "2.1.0", "to": "2.2.0", "fullUrl": f"{CDN}/patch-2.1.0-2.2.0.zip", "sha256": _sha(patch)},
            ],
        },
    )


def _settings():
    return UpdaterSettings(
        release_url=RELEASE_URL,
        retry_base_delay_sec=0,
        free_space_margin_bytes=0,
        base_game_min_files=2,
    )


@pytest.fixture
def service(tmp_path, fake_session):
    return UpdateService(settings=_settings(), paths=AppPaths.create(str(tmp_path)), session=fake_session)


def test_bootstrap_reports_missing_client_and_syncs_paths(service, fake_session, make_zip, tmp_path):
    _publish(fake_session, make_zip)

    info = service.bootstrap()

    assert info.client_version is None
    assert info.latest_version == "2.2.0"
    assert info.launcher_supported
    assert service.launcher_state() is LauncherState.MISSING
    assert service.store.read().paths.install_path == str(tmp_path / "Game")


def test_install_then_update_reaches_latest(service, fake_session, make_zip, tmp_path):
    _publish(fake_session, make_zip)

    installed = service.install_base_game()
    updated = service.apply_patches()

    assert installed.success and updated.success
    assert updated.result.installed_version == "2.2.0"
    assert (tmp_path / "Game" / "data" / "patch.pak").exists()
    assert service.launcher_state() is LauncherState.LATEST


def test_failures_are_returned_classified(service, fake_session, make_zip):
    _publish(fake_session, make_zip, base_sha="0" * 64)

    outcome = service.install_base_game()

    assert not outcome.success and not outcome.paused
    assert outcome.error.category is ErrorCategory.VERIFICATION
    assert outcome.retryable


def test_unreachable_release_is_network_failure(service):
    outcome = service.apply_patches()

    assert outcome.error.category is ErrorCategory.NETWORK
    assert "HTTP 404" in outcome.error.technical_message


def test_clear_downloads_removes_files_and_resets_flags(service, tmp_path):
    downloads = tmp_path / "Downloads"
    (downloads / "keep").mkdir(parents=True)
    (downloads / "full.zip").write_bytes(b"a")
    (downloads / "patch-1.0.0-2.0.0.zip").write_bytes(b"b")

    def _apply(doc):
        doc.game_state.installed_version = "2.0.0"
        doc.game_state.base_game.is_downloaded = True
        doc.game_state.patches.downloaded_version = "2.0.0"

    service.store.update(_apply)

    assert service.clear_downloads() == 2

    state = service.store.read().game_state
    assert sorted(p.name for p in downloads.iterdir()) == ["keep"]
    assert state.base_game.is_downloaded is False
    assert state.patches.downloaded_version == ""
    assert state.installed_version == "2.0.0"


def test_clear_downloads_without_directory(service):
    assert service.clear_downloads() == 0


def test_cli_status_and_update(tmp_path, fake_session, make_zip, monkeypatch, capsys):
    _publish(fake_session, make_zip)
    monkeypatch.setattr(service_module.requests, "Session", lambda: fake_session)
    monkeypatch.setenv("GAMEUPDATER_RETRY_BASE_DELAY", "0")
    monkeypatch.setattr(disk.psutil, "disk_usage", lambda _path: SimpleNamespace(free=10 * 1024**3))
    args = ["--data-dir", str(tmp_path), "--release-url", RELEASE_URL]

    try:
        assert cli.main(args + ["status"]) == 0
        out = capsys.readouterr().out
        assert "Installed version: not installed" in out
        assert "Latest version:    2.2.0" in out

        # Only two files in the base archive; the default minimum is 100.
        assert cli.main(args + ["install"]) == 1
        assert "What you can try:" in capsys.readouterr().err
    finally:
        logging.getLogger().handlers.clear()


def test_cli_operation_errors_reach_the_caller(capsys):
    paused = []
    service = SimpleNamespace(pause=lambda: paused.append(True))

    def _broken():
        raise UpdaterError("Failed to write storage.json")

    with pytest.raises(UpdaterError, match="Failed to write storage.json"):
        cli._run_interruptible(service, _broken)
    assert paused == []

    outcome = cli._run_interruptible(service, lambda: "done")
    assert outcome == "done"
