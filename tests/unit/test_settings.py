from __future__ import annotations

import pytest

from quotabar.core.config.settings import get_settings

pytestmark = pytest.mark.unit


def test_defaults(tmp_path):
    settings = get_settings()
    assert settings.state_file == tmp_path / "state.json"
    assert settings.codex_app_server_args == ["-s", "read-only", "-a", "untrusted", "app-server"]
    assert settings.claude_keychain_prompt_mode == "only_on_user_action"
    assert settings.keychain_cooldown_hours == 6.0


def test_app_server_args_from_env(monkeypatch):
    monkeypatch.setenv("QUOTABAR_CODEX_APP_SERVER_ARGS", "app-server --listen stdio")
    get_settings.cache_clear()
    assert get_settings().codex_app_server_args == ["app-server", "--listen", "stdio"]


def test_blank_cookie_and_paths_are_unset(monkeypatch):
    monkeypatch.setenv("QUOTABAR_CLAUDE_COOKIE_HEADER", "   ")
    monkeypatch.setenv("QUOTABAR_CLAUDE_CREDENTIALS_FILE", "")
    get_settings.cache_clear()
    settings = get_settings()
    assert settings.claude_cookie_header is None
    assert settings.claude_credentials_file is None


def test_state_file_expands_user(monkeypatch, isolated_environment):
    monkeypatch.setenv("QUOTABAR_STATE_FILE", "~/custom/state.json")
    get_settings.cache_clear()
    assert get_settings().state_file == isolated_environment / "custom" / "state.json"


def test_invalid_timeout_is_rejected(monkeypatch):
    monkeypatch.setenv("QUOTABAR_FETCH_TIMEOUT_SECONDS", "0")
    get_settings.cache_clear()
    with pytest.raises(ValueError):
        get_settings()
