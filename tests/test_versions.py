from gameupdater.core.launcher_state import LauncherState, StateContext, button_label, get_launcher_state
from gameupdater.core.storage import default_document
from gameupdater.core.versions import compare_versions, is_installed, is_launcher_supported


def test_compare_versions_numeric_ordering():
    assert compare_versions("1.10.0", "1.9.0") == 1
    assert compare_versions("1.0", "1.0.0") == 0
    assert compare_versions("", "0.1") == -1
    assert compare_versions("build-7", "build-7") == 0


def test_installed_and_launcher_support():
    assert not is_installed("0.0.0")
    assert not is_installed("")
    assert is_installed("1.0.0")
    assert is_launcher_supported("", "1.0.0")
    assert is_launcher_supported("1.0.0", "1.2.0")
    assert not is_launcher_supported("2.0.0", "1.2.0")


def _ctx(**overrides):
    values = dict(client_version="1.0.0", latest_version="1.1.0", base_game_downloaded=True, base_game_extracted=True)
    values.update(overrides)
    return StateContext(**values)


def test_launcher_state_transitions():
    assert get_launcher_state(_ctx(error="boom")) is LauncherState.ERROR
    assert get_launcher_state(_ctx(base_game_downloaded=False)) is LauncherState.MISSING
    assert get_launcher_state(_ctx(client_version="1.1.0")) is LauncherState.LATEST
    assert get_launcher_state(_ctx()) is LauncherState.OUTDATED
    assert get_launcher_state(_ctx(base_game_extracted=False)) is LauncherState.MISSING
    assert button_label(LauncherState.OUTDATED) == "Update"


def test_state_context_from_document_treats_sentinel_as_missing():
    ctx = StateContext.from_document(default_document(), "1.0.0")

    assert ctx.client_version is None
    assert get_launcher_state(ctx) is LauncherState.MISSING
