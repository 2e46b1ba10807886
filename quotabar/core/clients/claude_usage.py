from __future__ import annotations

from aiohttp_retry import RetryClient

from quotabar.core.clients.http import get_json
from quotabar.core.config.settings import get_settings
from quotabar.core.types import JsonObject


async def fetch_oauth_usage(
    *,
    bearer_token: str,
    base_url: str | None = None,
    timeout_seconds: float | None = None,
    client: RetryClient | None = None,
) -> JsonObject:
    settings = get_settings()
    usage_base = (base_url or settings.claude_usage_base_url).rstrip("/")
    headers = {
        "Authorization": f"Bearer {bearer_token}",
        "anthropic-beta": settings.claude_usage_beta,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    return await get_json(
        f"{usage_base}/api/oauth/usage",
        headers=headers,
        timeout_seconds=timeout_seconds or settings.fetch_timeout_seconds,
        max_retries=settings.http_max_retries,
        client=client,
    )
