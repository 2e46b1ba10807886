from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path

import aiohttp

from quotabar.core.clients.http import get_http_client, safe_json
from quotabar.core.config.settings import Settings, get_settings
from quotabar.core.exceptions import InteractionDeniedError, ProtocolError
from quotabar.core.fetch.context import Interaction, get_interaction
from quotabar.core.keychain.gate import CredentialAccessGate
from quotabar.core.keychain.preflight import KeychainPreflight, PreflightStatus
from quotabar.core.types import JsonObject, JsonValue

logger = logging.getLogger(__name__)

_EXPIRY_SKEW_MS = 60_000


@dataclass(frozen=True, slots=True)
class ClaudeCredentials:
    access_token: str
    source: str
    refresh_token: str | None = None
    expires_at_ms: int | None = None
    subscription_type: str | None = None
    email: str | None = None

    def is_expired(self, now_ms: int | None = None) -> bool:
        if self.expires_at_ms is None:
            return False
        current = now_ms if now_ms is not None else int(time.time() * 1000)
        return self.expires_at_ms <= current + _EXPIRY_SKEW_MS


def parse_credentials_json(raw: str | bytes, *, source: str) -> ClaudeCredentials | None:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None

    oauth = data.get("claudeAiOauth")
    if isinstance(oauth, dict):
        access_token = _read_string(oauth, "accessToken")
        if access_token is not None:
            return ClaudeCredentials(
                access_token=access_token,
                source=source,
                refresh_token=_read_string(oauth, "refreshToken"),
                expires_at_ms=_parse_int(oauth.get("expiresAt")),
                subscription_type=_read_string(oauth, "subscriptionType"),
                email=_extract_email(data),
            )

    session = data.get("session")
    if isinstance(session, dict) and isinstance(session.get("oauth"), dict):
        session_oauth = session["oauth"]
        access_token = (
            _read_string(session_oauth, "token")
            or _read_string(session_oauth, "access_token")
            or _read_string(session_oauth, "accessToken")
        )
        if access_token is not None:
            return ClaudeCredentials(
                access_token=access_token,
                source=source,
                refresh_token=_read_string(session_oauth, "refresh_token")
                or _read_string(session_oauth, "refreshToken"),
                expires_at_ms=_parse_expires_at_ms(session_oauth),
                email=_extract_email(data),
            )
    return None


def credential_candidates(settings: Settings | None = None) -> list[Path]:
    settings = settings or get_settings()
    candidates: list[Path] = []
    if settings.claude_credentials_file is not None:
        candidates.append(settings.claude_credentials_file)
    home = Path.home()
    candidates.extend(
        [
            home / ".claude/.credentials.json",
            home / ".claude/credentials.json",
            home / ".config/claude/.credentials.json",
            home / ".config/claude/credentials.json",
        ]
    )
    return candidates


def load_credentials_file(settings: Settings | None = None) -> ClaudeCredentials | None:
    for path in credential_candidates(settings):
        try:
            if not path.is_file():
                continue
            raw = path.read_text(encoding="utf-8")
        except OSError:
            logger.warning("Claude credentials unreadable path=%s", path, exc_info=True)
            continue
        credentials = parse_credentials_json(raw, source=f"file:{path}")
        if credentials is None:
            logger.warning("Claude credentials file has no OAuth token path=%s", path)
            continue
        return credentials
    return None


class KeychainCredentialReader:
    """Reads the Claude CLI's OAuth item from the login keychain.

    A non-interactive preflight runs first. When it reports that reading the
    secret would show a dialog, background refreshes record a cooldown on the
    gate instead of prompting.
    """

    def __init__(
        self,
        *,
        gate: CredentialAccessGate,
        preflight: KeychainPreflight | None = None,
        service: str | None = None,
    ) -> None:
        self._gate = gate
        self._preflight = preflight or KeychainPreflight()
        self._service = service or get_settings().claude_keychain_service

    async def read(self) -> ClaudeCredentials | None:
        if not self._preflight.supported:
            return None
        if not self._gate.should_allow_prompt():
            raise InteractionDeniedError()

        outcome = await self._preflight.check_generic_password(self._service)
        if outcome.status is PreflightStatus.NOT_FOUND:
            return None
        if outcome.status is PreflightStatus.FAILURE:
            logger.warning("Keychain preflight failed service=%s exit_code=%s", self._service, outcome.exit_code)
            return None
        if outcome.status is PreflightStatus.INTERACTION_REQUIRED and not _prompt_permitted():
            if get_interaction() is Interaction.BACKGROUND:
                self._gate.record_denied()
            raise InteractionDeniedError("Reading Claude credentials from the keychain needs a user prompt")

        secret = await self._preflight.read_generic_password(self._service)
        if secret is None:
            if outcome.status is PreflightStatus.INTERACTION_REQUIRED:
                self._gate.record_denied()
                raise InteractionDeniedError("Keychain access to Claude credentials was denied")
            return None
        credentials = parse_credentials_json(secret, source="keychain")
        if credentials is None:
            raise ProtocolError("Keychain item does not hold Claude OAuth credentials")
        return credentials


async def refresh_access_token(credentials: ClaudeCredentials) -> ClaudeCredentials | None:
    if not credentials.refresh_token:
        return None

    settings = get_settings()
    payload = {
        "grant_type": "refresh_token",
        "refresh_token": credentials.refresh_token,
        "client_id": settings.claude_oauth_client_id,
    }
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    timeout = aiohttp.ClientTimeout(total=settings.fetch_timeout_seconds)
    try:
        async with get_http_client().session.post(
            settings.claude_oauth_token_url,
            json=payload,
            headers=headers,
            timeout=timeout,
        ) as response:
            data = await safe_json(response)
            if response.status >= 400:
                logger.warning("Claude token refresh rejected status=%s", response.status)
                return None
    except (aiohttp.ClientError, asyncio.TimeoutError):
        logger.warning("Claude token refresh failed", exc_info=True)
        return None

    access_token = _read_string(data, "access_token")
    if access_token is None:
        return None
    return replace(
        credentials,
        access_token=access_token,
        source=f"{credentials.source}:refreshed",
        refresh_token=_read_string(data, "refresh_token") or credentials.refresh_token,
        expires_at_ms=_parse_expires_at_ms(data),
    )


def _prompt_permitted() -> bool:
    mode = get_settings().claude_keychain_prompt_mode
    if mode == "always":
        return True
    if mode == "never":
        return False
    return get_interaction() is Interaction.USER_INITIATED


def _parse_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _parse_expires_at_ms(payload: JsonObject) -> int | None:
    expires_at = _parse_int(payload.get("expires_at") or payload.get("expiresAt"))
    if expires_at is not None:
        if expires_at < 10_000_000_000:
            return expires_at * 1000
        return expires_at
    expires_in = _parse_int(payload.get("expires_in") or payload.get("expiresIn"))
    if expires_in is None:
        return None
    return (int(time.time()) + expires_in) * 1000


def _extract_email(payload: JsonValue) -> str | None:
    if isinstance(payload, dict):
        for key, value in payload.items():
            if key.strip().lower().replace("-", "_") in ("email", "email_address") and isinstance(value, str):
                email = value.strip()
                if "@" in email:
                    return email
            nested = _extract_email(value)
            if nested is not None:
                return nested
        return None
    if isinstance(payload, list):
        for item in payload:
            nested = _extract_email(item)
            if nested is not None:
                return nested
    return None


def _read_string(payload: JsonObject, key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
