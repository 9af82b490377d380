from pathlib import Path

from gameupdater.core.paths import AppPaths, has_required_game_files
from gameupdater.core.settings import UpdaterSettings


def test_from_env_applies_overrides(monkeypatch):
    monkeypatch.setenv("GAMEUPDATER_RELEASE_URL", "https://mirror.example.invalid/release.json")
    monkeypatch.setenv("GAMEUPDATER_MAX_RETRIES", "2")
    monkeypatch.setenv("GAMEUPDATER_IDLE_TIMEOUT", "10.5")

    settings = UpdaterSettings.from_env()

    assert settings.release_url == "https://mirror.example.invalid/release.json"
    assert settings.max_retries == 2
    assert settings.idle_timeout_sec == 10.5


def test_from_env_ignores_invalid_numbers(monkeypatch):
    monkeypatch.setenv("GAMEUPDATER_MAX_RETRIES", "many")
    monkeypatch.setenv("GAMEUPDATER_RETRY_BASE_DELAY", "-1")

    settings = UpdaterSettings.from_env()

    assert settings.max_retries == 5
    assert settings.retry_base_delay_sec == 1.0


def test_app_paths_custom_install_dir_keeps_storage_in_data_dir(tmp_path):
    paths = AppPaths.create(str(tmp_path / "data"), str(tmp_path / "games"))

    assert paths.game_root == tmp_path / "games" / "Game"
    assert paths.downloads_root == tmp_path / "games" / "Downloads"
    assert paths.storage_file == tmp_path / "data" / "storage.json"

    paths.ensure_dirs()
    assert paths.game_root.is_dir() and paths.logs_root.is_dir()


def test_app_paths_default_layout(tmp_path):
    paths = AppPaths.create(str(tmp_path))

    assert paths.game_root == Path(tmp_path) / "Game"
    assert paths.install_base == Path(tmp_path)


def test_has_required_game_files(tmp_path):
    assert has_required_game_files(tmp_path, ["game.exe"]) is False
    (tmp_path / "game.exe").write_bytes(b"MZ")
    assert has_required_game_files(tmp_path, ["game.exe"]) is True
    assert has_required_game_files(tmp_path, []) is False
