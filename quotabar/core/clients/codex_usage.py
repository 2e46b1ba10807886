from __future__ import annotations

import logging

from aiohttp_retry import RetryClient
from pydantic import ValidationError

from quotabar.core.clients.http import UsageFetchError, get_json
from quotabar.core.config.settings import get_settings
from quotabar.core.usage.models import UsagePayload

logger = logging.getLogger(__name__)


async def fetch_usage(
    *,
    access_token: str,
    account_id: str | None,
    base_url: str | None = None,
    timeout_seconds: float | None = None,
    max_retries: int | None = None,
    client: RetryClient | None = None,
) -> UsagePayload:
    settings = get_settings()
    url = _usage_url(base_url or settings.codex_usage_base_url)
    retries = max_retries if max_retries is not None else settings.http_max_retries
    try:
        data = await get_json(
            url,
            headers=_usage_headers(access_token, account_id),
            timeout_seconds=timeout_seconds or settings.fetch_timeout_seconds,
            max_retries=retries,
            client=client,
        )
    except UsageFetchError as exc:
        logger.warning("Codex usage fetch failed status=%s message=%s", exc.status_code, exc.message)
        raise
    try:
        return UsagePayload.model_validate(data)
    except ValidationError as exc:
        logger.warning("Codex usage fetch invalid payload")
        raise UsageFetchError(502, "Invalid usage payload") from exc


def _usage_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if "/backend-api" not in normalized:
        normalized = f"{normalized}/backend-api"
    return f"{normalized}/wham/usage"


def _usage_headers(access_token: str, account_id: str | None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
    if account_id:
        headers["chatgpt-account-id"] = account_id
    return headers
