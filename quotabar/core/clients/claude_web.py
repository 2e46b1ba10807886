from __future__ import annotations

import logging
from dataclasses import dataclass

from aiohttp_retry import RetryClient

from quotabar.core.clients.http import UsageFetchError, get_json
from quotabar.core.config.settings import get_settings
from quotabar.core.types import JsonObject, JsonValue

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClaudeWebPayload:
    organization_id: str
    usage: JsonObject
    account: JsonObject | None


async def fetch_web_usage(
    *,
    cookie_header: str,
    base_url: str | None = None,
    timeout_seconds: float | None = None,
    client: RetryClient | None = None,
) -> ClaudeWebPayload:
    settings = get_settings()
    web_base = (base_url or settings.claude_web_base_url).rstrip("/")
    timeout = timeout_seconds or settings.fetch_timeout_seconds
    headers = {
        "Cookie": cookie_header,
        "Accept": "application/json",
    }

    async def _get(path: str) -> JsonObject:
        return await get_json(
            f"{web_base}{path}",
            headers=headers,
            timeout_seconds=timeout,
            max_retries=settings.http_max_retries,
            client=client,
        )

    orgs = await _get("/api/organizations")
    org_id = extract_organization_id(orgs)
    if org_id is None:
        raise UsageFetchError(404, "No Claude organization found for this session")

    usage = await _get(f"/api/organizations/{org_id}/usage")
    try:
        account: JsonObject | None = await _get("/api/account")
    except UsageFetchError as exc:
        logger.debug("Claude account lookup failed status=%s message=%s", exc.status_code, exc.message)
        account = None
    return ClaudeWebPayload(organization_id=org_id, usage=usage, account=account)


def extract_organization_id(payload: JsonObject) -> str | None:
    objects: list[JsonValue] = []
    data = payload.get("data")
    if isinstance(data, list):
        objects.extend(data)
    objects.append(payload)
    for key in ("organizations", "items"):
        value = payload.get(key)
        if isinstance(value, list):
            objects.extend(value)

    for obj in objects:
        if not isinstance(obj, dict):
            continue
        for key in ("uuid", "organization_uuid", "id", "organization_id"):
            value = obj.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None
