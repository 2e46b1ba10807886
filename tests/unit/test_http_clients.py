from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from quotabar.core.clients.claude_usage import fetch_oauth_usage
from quotabar.core.clients.claude_web import extract_organization_id, fetch_web_usage
from quotabar.core.clients.codex_usage import fetch_usage
from quotabar.core.clients.http import UsageFetchError, get_json, to_fetch_error
from quotabar.core.exceptions import (
    AuthenticationRequiredError,
    FetchTimeoutError,
    NotFoundError,
    ProtocolError,
)

pytestmark = pytest.mark.unit


def _mock_response(*, status: int = 200, json_data: object = None) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data)
    resp.text = AsyncMock(return_value="")
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _mock_client(routes: dict[str, MagicMock]) -> MagicMock:
    client = MagicMock()

    def request(method: str, url: str, **kwargs) -> MagicMock:
        for suffix, response in routes.items():
            if url.endswith(suffix):
                return response
        raise AssertionError(f"unexpected url {url}")

    client.request = MagicMock(side_effect=request)
    return client


@pytest.mark.asyncio
async def test_get_json_returns_payload():
    client = _mock_client({"/x": _mock_response(json_data={"ok": True})})

    data = await get_json("https://example.test/x", headers={}, timeout_seconds=1, max_retries=0, client=client)

    assert data == {"ok": True}


@pytest.mark.asyncio
async def test_get_json_raises_with_server_message():
    client = _mock_client({"/x": _mock_response(status=403, json_data={"error": {"message": "forbidden"}})})

    with pytest.raises(UsageFetchError) as exc_info:
        await get_json("https://example.test/x", headers={}, timeout_seconds=1, max_retries=0, client=client)

    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "forbidden"


@pytest.mark.asyncio
async def test_get_json_wraps_transport_errors():
    client = MagicMock()
    client.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

    with pytest.raises(UsageFetchError) as exc_info:
        await get_json("https://example.test/x", headers={}, timeout_seconds=1, max_retries=0, client=client)

    assert exc_info.value.status_code == 0


def test_to_fetch_error_mapping():
    assert isinstance(to_fetch_error(UsageFetchError(401, "no"), source="s"), AuthenticationRequiredError)
    assert isinstance(to_fetch_error(UsageFetchError(403, "no"), source="s"), AuthenticationRequiredError)
    assert isinstance(to_fetch_error(UsageFetchError(404, "no"), source="s"), NotFoundError)
    assert isinstance(to_fetch_error(UsageFetchError(502, "bad"), source="s"), ProtocolError)

    timeout = UsageFetchError(0, "slow")
    timeout.__cause__ = asyncio.TimeoutError()
    assert isinstance(to_fetch_error(timeout, source="s"), FetchTimeoutError)

    network = to_fetch_error(UsageFetchError(0, "refused"), source="ChatGPT usage")
    assert network.code == "network_error"
    assert network.message == "ChatGPT usage: refused"


@pytest.mark.asyncio
async def test_codex_usage_sends_account_header_and_validates():
    response = _mock_response(
        json_data={"plan_type": "plus", "rate_limit": {"primary_window": {"used_percent": 5}}}
    )
    client = _mock_client({"/backend-api/wham/usage": response})

    payload = await fetch_usage(
        access_token="at",
        account_id="acc_1",
        base_url="https://chatgpt.test",
        client=client,
    )

    headers = client.request.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer at"
    assert headers["chatgpt-account-id"] == "acc_1"
    assert payload.plan_type == "plus"


@pytest.mark.asyncio
async def test_codex_usage_invalid_payload():
    client = _mock_client({"/wham/usage": _mock_response(json_data={"rate_limit": "broken"})})

    with pytest.raises(UsageFetchError) as exc_info:
        await fetch_usage(access_token="at", account_id=None, client=client)

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_claude_oauth_usage_sends_beta_header():
    client = _mock_client({"/api/oauth/usage": _mock_response(json_data={"five_hour": {"utilization": 1}})})

    payload = await fetch_oauth_usage(bearer_token="tok", client=client)

    headers = client.request.call_args.kwargs["headers"]
    assert headers["anthropic-beta"] == "oauth-2025-04-20"
    assert headers["Authorization"] == "Bearer tok"
    assert payload == {"five_hour": {"utilization": 1}}


@pytest.mark.asyncio
async def test_claude_web_usage_resolves_organization():
    client = _mock_client(
        {
            "/api/organizations": _mock_response(json_data=[{"uuid": "org-123", "name": "Acme"}]),
            "/api/organizations/org-123/usage": _mock_response(json_data={"five_hour": {"utilization": 9}}),
            "/api/account": _mock_response(status=500, json_data={"error": "boom"}),
        }
    )

    payload = await fetch_web_usage(cookie_header="sessionKey=s", client=client)

    assert payload.organization_id == "org-123"
    assert payload.usage == {"five_hour": {"utilization": 9}}
    assert payload.account is None
    assert client.request.call_args_list[0].kwargs["headers"]["Cookie"] == "sessionKey=s"


@pytest.mark.asyncio
async def test_claude_web_usage_without_organization():
    client = _mock_client({"/api/organizations": _mock_response(json_data={"data": []})})

    with pytest.raises(UsageFetchError) as exc_info:
        await fetch_web_usage(cookie_header="sessionKey=s", client=client)

    assert exc_info.value.status_code == 404


def test_extract_organization_id_variants():
    assert extract_organization_id({"organizations": [{"id": "o1"}]}) == "o1"
    assert extract_organization_id({"uuid": "top"}) == "top"
    assert extract_organization_id({}) is None
