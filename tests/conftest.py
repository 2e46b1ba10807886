from __future__ import annotations

import pytest

from quotabar.core.config.settings import get_settings
from quotabar.core.keychain.gate import clear_credential_gates
from quotabar.modules.providers import get_provider_registry


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("QUOTABAR_STATE_FILE", str(tmp_path / "state.json"))
    monkeypatch.delenv("CODEX_HOME", raising=False)
    get_settings.cache_clear()
    clear_credential_gates()
    get_provider_registry.cache_clear()
    yield home
    get_settings.cache_clear()
    clear_credential_gates()
    get_provider_registry.cache_clear()
