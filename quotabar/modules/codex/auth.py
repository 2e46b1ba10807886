from __future__ import annotations

import base64
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from quotabar.core.config.settings import get_settings
from quotabar.core.types import JsonObject

logger = logging.getLogger(__name__)

_OPENAI_AUTH_CLAIM = "https://api.openai.com/auth"
_OPENAI_PROFILE_CLAIM = "https://api.openai.com/profile"


@dataclass(frozen=True, slots=True)
class CodexAccountInfo:
    email: str | None = None
    plan: str | None = None


@dataclass(frozen=True, slots=True)
class CodexTokens:
    access_token: str
    account_id: str | None = None
    id_token: str | None = None


def codex_home(env: Mapping[str, str]) -> Path:
    configured = get_settings().codex_home
    if configured is not None:
        return configured
    override = env.get("CODEX_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".codex"


def auth_file_path(env: Mapping[str, str]) -> Path:
    return codex_home(env) / "auth.json"


def load_auth_file(env: Mapping[str, str]) -> JsonObject | None:
    path = auth_file_path(env)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError:
        logger.warning("Codex auth file unreadable path=%s", path, exc_info=True)
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Codex auth file invalid JSON path=%s", path)
        return None
    return data if isinstance(data, dict) else None


def load_tokens(env: Mapping[str, str]) -> CodexTokens | None:
    data = load_auth_file(env)
    if data is None:
        return None
    tokens = data.get("tokens")
    if not isinstance(tokens, dict):
        return None
    access_token = _string(tokens.get("access_token"))
    if access_token is None:
        return None
    return CodexTokens(
        access_token=access_token,
        account_id=_string(tokens.get("account_id")),
        id_token=_string(tokens.get("id_token")),
    )


def load_account_info(env: Mapping[str, str]) -> CodexAccountInfo:
    """Reads email and plan from the cached id token without starting the CLI."""
    data = load_auth_file(env)
    tokens = data.get("tokens") if data else None
    id_token = _string(tokens.get("id_token")) if isinstance(tokens, dict) else None
    if id_token is None:
        return CodexAccountInfo()
    payload = decode_jwt_payload(id_token)
    if payload is None:
        return CodexAccountInfo()
    return account_info_from_claims(payload)


def account_info_from_claims(payload: JsonObject) -> CodexAccountInfo:
    auth_claim = payload.get(_OPENAI_AUTH_CLAIM)
    profile_claim = payload.get(_OPENAI_PROFILE_CLAIM)
    plan = _string(auth_claim.get("chatgpt_plan_type")) if isinstance(auth_claim, dict) else None
    plan = plan or _string(payload.get("chatgpt_plan_type"))
    email = _string(payload.get("email"))
    if email is None and isinstance(profile_claim, dict):
        email = _string(profile_claim.get("email"))
    return CodexAccountInfo(email=email, plan=plan)


def decode_jwt_payload(token: str) -> JsonObject | None:
    parts = token.split(".")
    if len(parts) < 2:
        return None
    segment = parts[1]
    padded = segment + "=" * (-len(segment) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        parsed = json.loads(decoded)
    except (ValueError, UnicodeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
