from __future__ import annotations

import logging

from quotabar.core.clients.claude_usage import fetch_oauth_usage
from quotabar.core.clients.claude_web import fetch_web_usage
from quotabar.core.clients.http import UsageFetchError, to_fetch_error
from quotabar.core.config.settings import get_settings
from quotabar.core.exceptions import AuthenticationRequiredError, CredentialsNotFoundError, FetchError
from quotabar.core.fetch.context import FetchContext, Interaction
from quotabar.core.fetch.strategy import FetchKind, FetchResult, default_should_fallback, make_result
from quotabar.core.keychain.gate import CLAUDE_OAUTH_KEYCHAIN, CredentialAccessGate, get_credential_gate
from quotabar.core.keychain.preflight import KeychainPreflight
from quotabar.core.pty.driver import PTYOptions
from quotabar.core.pty.runner import PTYRunner, build_environment
from quotabar.core.usage.types import ProviderIdentity
from quotabar.core.utils.paths import which
from quotabar.modules.claude.cookies import CookieHeaderProvider, SettingsCookieHeaderProvider
from quotabar.modules.claude.credentials import (
    ClaudeCredentials,
    KeychainCredentialReader,
    load_credentials_file,
    refresh_access_token,
)
from quotabar.modules.claude.parsers import identity_from_account, parse_usage_text, plan_name, snapshot_from_usage

logger = logging.getLogger(__name__)

USAGE_MARKERS = ("Current session", "Current week")
LOGIN_MARKERS = (
    "please run /login",
    "invalid api key",
    "select login method",
    "oauth token has expired",
)


class ClaudeOAuthStrategy:
    id = "claude.oauth"
    kind = FetchKind.OAUTH

    def __init__(
        self,
        *,
        gate: CredentialAccessGate | None = None,
        preflight: KeychainPreflight | None = None,
    ) -> None:
        self._gate_override = gate
        self._preflight = preflight or KeychainPreflight()

    @property
    def gate(self) -> CredentialAccessGate:
        return self._gate_override or get_credential_gate(CLAUDE_OAUTH_KEYCHAIN)

    async def is_available(self, context: FetchContext) -> bool:
        if context.effective_interaction is Interaction.USER_INITIATED:
            self.gate.clear_denied()

        credentials = load_credentials_file()
        if credentials is not None:
            if not credentials.is_expired():
                return True
            # Expired tokens are refreshable with our refresh token or by the CLI itself.
            return credentials.refresh_token is not None or _claude_on_path(context)
        return self._preflight.supported and self.gate.should_allow_prompt()

    async def fetch(self, context: FetchContext) -> FetchResult:
        credentials = await self._load_credentials()
        if credentials.is_expired():
            refreshed = await refresh_access_token(credentials)
            if refreshed is None:
                raise AuthenticationRequiredError("Claude OAuth token expired; run `claude` to sign in again")
            credentials = refreshed

        try:
            payload = await fetch_oauth_usage(
                bearer_token=credentials.access_token,
                timeout_seconds=context.timeout_seconds,
            )
        except UsageFetchError as exc:
            raise to_fetch_error(exc, source="Claude OAuth usage") from exc

        identity = ProviderIdentity(
            account_email=credentials.email,
            login_method=plan_name(credentials.subscription_type),
        )
        usage = snapshot_from_usage(payload, identity=identity)
        return make_result(self, usage=usage, source_label="claude-oauth")

    def should_fallback(self, error: FetchError, context: FetchContext) -> bool:
        return default_should_fallback(error, context)

    async def _load_credentials(self) -> ClaudeCredentials:
        credentials = load_credentials_file()
        if credentials is not None:
            return credentials
        reader = KeychainCredentialReader(gate=self.gate, preflight=self._preflight)
        credentials = await reader.read()
        if credentials is None:
            raise CredentialsNotFoundError("No Claude OAuth credentials found")
        logger.debug("Claude credentials loaded source=%s", credentials.source)
        return credentials


class ClaudeWebStrategy:
    id = "claude.web"
    kind = FetchKind.WEB

    def __init__(self, cookies: CookieHeaderProvider | None = None) -> None:
        self._cookies = cookies or SettingsCookieHeaderProvider()

    async def is_available(self, context: FetchContext) -> bool:
        return self._cookies.available(context)

    async def fetch(self, context: FetchContext) -> FetchResult:
        header = await self._cookies.cookie_header(context)
        if header is None:
            raise CredentialsNotFoundError("No claude.ai session cookie available")
        try:
            payload = await fetch_web_usage(cookie_header=header, timeout_seconds=context.timeout_seconds)
        except UsageFetchError as exc:
            raise to_fetch_error(exc, source="claude.ai usage") from exc

        usage = snapshot_from_usage(payload.usage, identity=identity_from_account(payload.account))
        return make_result(self, usage=usage, source_label=f"claude-web ({self._cookies.source_label})")

    def should_fallback(self, error: FetchError, context: FetchContext) -> bool:
        return default_should_fallback(error, context)


class ClaudeCLIStrategy:
    id = "claude.cli"
    kind = FetchKind.CLI_PTY

    def __init__(self, runner: PTYRunner | None = None) -> None:
        self._runner = runner or PTYRunner()

    async def is_available(self, context: FetchContext) -> bool:
        return _claude_on_path(context)

    async def fetch(self, context: FetchContext) -> FetchResult:
        settings = get_settings()
        options = PTYOptions(
            rows=settings.pty_rows,
            cols=settings.pty_cols,
            timeout=min(settings.pty_timeout_seconds, context.timeout_seconds),
            env=context.env,
            completion_markers=USAGE_MARKERS,
            output_guard=_abort_on_login_prompt,
        )
        result = await self._runner.run(settings.claude_binary, "/usage", options)
        return make_result(self, usage=parse_usage_text(result.text), source_label="claude-cli")

    def should_fallback(self, error: FetchError, context: FetchContext) -> bool:
        return default_should_fallback(error, context)


def _claude_on_path(context: FetchContext) -> bool:
    return which(get_settings().claude_binary, build_environment(context.env)) is not None


def _abort_on_login_prompt(text: str) -> None:
    lowered = text.lower()
    for marker in LOGIN_MARKERS:
        if marker in lowered:
            raise AuthenticationRequiredError("Claude CLI is not logged in; run `claude` and use /login")
