from __future__ import annotations

import asyncio
import logging

from quotabar.core.clients.codex_usage import fetch_usage
from quotabar.core.clients.http import UsageFetchError, to_fetch_error
from quotabar.core.config.settings import get_settings
from quotabar.core.exceptions import (
    AuthenticationRequiredError,
    CredentialsNotFoundError,
    FetchError,
    FetchTimeoutError,
)
from quotabar.core.fetch.context import FetchContext
from quotabar.core.fetch.strategy import FetchKind, FetchResult, default_should_fallback, make_result
from quotabar.core.pty.driver import PTYOptions
from quotabar.core.pty.runner import PTYRunner, build_environment
from quotabar.core.rpc.client import RPCClient
from quotabar.core.usage.models import RPCAccountResponse
from quotabar.core.usage.types import CreditsSnapshot
from quotabar.core.utils.paths import which
from quotabar.modules.codex.auth import auth_file_path, load_account_info, load_tokens
from quotabar.modules.codex.parsers import (
    credits_from_rpc,
    credits_from_usage,
    parse_status_text,
    snapshot_from_rpc,
    snapshot_from_status,
    snapshot_from_usage,
)

logger = logging.getLogger(__name__)

STATUS_MARKERS = ("Credits:", "5h limit", "5-hour limit", "Weekly limit")
UPDATE_MARKERS = ("Update available!", "Run bun install -g @openai/codex", "Run npm install -g @openai/codex")
LOGIN_MARKERS = ("sign in with chatgpt", "please login", "not logged in")
CLI_ARGS = ("-s", "read-only", "-a", "untrusted")


class CodexRPCStrategy:
    id = "codex.rpc"
    kind = FetchKind.RPC

    async def is_available(self, context: FetchContext) -> bool:
        return which(get_settings().codex_binary, build_environment(context.env)) is not None

    async def fetch(self, context: FetchContext) -> FetchResult:
        settings = get_settings()
        try:
            async with asyncio.timeout(context.timeout_seconds):
                client = await RPCClient.start(
                    settings.codex_binary,
                    settings.codex_app_server_args,
                    env=context.env,
                )
                async with client:
                    await client.initialize(settings.rpc_client_name, settings.rpc_client_version)
                    limits = (await client.read_rate_limits()).rate_limits
                    account = await _read_account(client)
        except TimeoutError as exc:
            raise FetchTimeoutError(f"codex app-server did not answer within {context.timeout_seconds:g}s") from exc

        credits = credits_from_rpc(limits.credits) if context.include_credits else None
        return make_result(self, usage=snapshot_from_rpc(limits, account), source_label="codex-rpc", credits=credits)

    def should_fallback(self, error: FetchError, context: FetchContext) -> bool:
        return default_should_fallback(error, context)


class CodexCLIStrategy:
    id = "codex.cli"
    kind = FetchKind.CLI_PTY

    def __init__(self, runner: PTYRunner | None = None) -> None:
        self._runner = runner or PTYRunner()

    async def is_available(self, context: FetchContext) -> bool:
        return which(get_settings().codex_binary, build_environment(context.env)) is not None

    async def fetch(self, context: FetchContext) -> FetchResult:
        settings = get_settings()
        options = PTYOptions(
            rows=settings.pty_rows,
            cols=settings.pty_cols,
            timeout=min(settings.pty_timeout_seconds, context.timeout_seconds),
            extra_args=CLI_ARGS,
            env=context.env,
            completion_markers=STATUS_MARKERS,
            update_markers=UPDATE_MARKERS,
            output_guard=_abort_on_login_prompt,
        )
        result = await self._runner.run(settings.codex_binary, "/status", options)
        status = parse_status_text(result.text)
        usage = snapshot_from_status(status, load_account_info(context.env))
        credits = None
        if context.include_credits and status.credits is not None:
            credits = CreditsSnapshot(remaining=status.credits)
        return make_result(self, usage=usage, source_label="codex-cli", credits=credits)

    def should_fallback(self, error: FetchError, context: FetchContext) -> bool:
        return default_should_fallback(error, context)


class CodexOAuthStrategy:
    id = "codex.oauth"
    kind = FetchKind.OAUTH

    async def is_available(self, context: FetchContext) -> bool:
        return auth_file_path(context.env).is_file()

    async def fetch(self, context: FetchContext) -> FetchResult:
        tokens = load_tokens(context.env)
        if tokens is None:
            raise CredentialsNotFoundError(f"No ChatGPT tokens in {auth_file_path(context.env)}")
        try:
            payload = await fetch_usage(
                access_token=tokens.access_token,
                account_id=tokens.account_id,
                timeout_seconds=context.timeout_seconds,
            )
        except UsageFetchError as exc:
            raise to_fetch_error(exc, source="ChatGPT usage") from exc

        usage = snapshot_from_usage(payload, load_account_info(context.env))
        credits = credits_from_usage(payload.credits) if context.include_credits else None
        return make_result(self, usage=usage, source_label="codex-oauth", credits=credits)

    def should_fallback(self, error: FetchError, context: FetchContext) -> bool:
        return default_should_fallback(error, context)


async def _read_account(client: RPCClient) -> RPCAccountResponse | None:
    try:
        return await client.read_account()
    except FetchError as exc:
        logger.debug("Codex account read failed error=%s", exc.message)
        return None


def _abort_on_login_prompt(text: str) -> None:
    lowered = text.lower()
    for marker in LOGIN_MARKERS:
        if marker in lowered:
            raise AuthenticationRequiredError("Codex CLI is not logged in; run `codex login`")
