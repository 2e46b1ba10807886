from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[3]

DEFAULT_HOME_DIR = Path.home() / ".quotabar"
DEFAULT_STATE_FILE = DEFAULT_HOME_DIR / "state.json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUOTABAR_",
        env_file=(BASE_DIR / ".env", BASE_DIR / ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    state_file: Path = DEFAULT_STATE_FILE
    fetch_timeout_seconds: float = Field(default=20.0, gt=0)
    http_max_retries: int = Field(default=2, ge=0)

    pty_rows: int = Field(default=50, gt=0)
    pty_cols: int = Field(default=160, gt=0)
    pty_timeout_seconds: float = Field(default=20.0, gt=0)

    rpc_client_name: str = "quotabar"
    rpc_client_version: str = "1.0.0"
    codex_binary: str = "codex"
    codex_app_server_args: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["-s", "read-only", "-a", "untrusted", "app-server"]
    )
    codex_home: Path | None = None
    codex_usage_base_url: str = "https://chatgpt.com/backend-api"

    claude_binary: str = "claude"
    claude_credentials_file: Path | None = None
    claude_keychain_service: str = "Claude Code-credentials"
    claude_usage_base_url: str = "https://api.anthropic.com"
    claude_usage_beta: str = "oauth-2025-04-20"
    claude_web_base_url: str = "https://claude.ai"
    claude_cookie_header: str | None = None
    claude_oauth_token_url: str = "https://console.anthropic.com/v1/oauth/token"
    claude_oauth_client_id: str = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
    claude_keychain_prompt_mode: Literal["never", "only_on_user_action", "always"] = "only_on_user_action"

    keychain_access_disabled: bool = False
    keychain_cooldown_hours: float = Field(default=6.0, gt=0)
    keychain_slow_query_ms: float = Field(default=1000.0, gt=0)

    @field_validator("state_file", mode="before")
    @classmethod
    def _expand_state_file(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("state_file must be a path")

    @field_validator("codex_home", "claude_credentials_file", mode="before")
    @classmethod
    def _expand_optional_path(cls, value: str | Path | None) -> Path | None:
        if value is None:
            return None
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return None
            return Path(stripped).expanduser()
        raise TypeError("path setting must be a path")

    @field_validator("codex_app_server_args", mode="before")
    @classmethod
    def _split_app_server_args(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        if isinstance(value, list):
            return [str(entry) for entry in value if str(entry).strip()]
        raise TypeError("codex_app_server_args must be a list or space-separated string")

    @field_validator("claude_cookie_header", mode="before")
    @classmethod
    def _normalize_cookie_header(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
