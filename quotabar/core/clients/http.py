from __future__ import annotations

import asyncio
from dataclasses import dataclass

import aiohttp
from aiohttp_retry import ExponentialRetry, RetryClient

from quotabar import __version__
from quotabar.core.exceptions import (
    AuthenticationRequiredError,
    FetchError,
    FetchTimeoutError,
    NotFoundError,
    ProtocolError,
)
from quotabar.core.types import JsonObject

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
RETRY_START_TIMEOUT = 0.5
RETRY_MAX_TIMEOUT = 2.0
USER_AGENT = f"quotabar/{__version__}"


class UsageFetchError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(slots=True)
class HttpClient:
    session: aiohttp.ClientSession
    retry_client: RetryClient

    async def close(self) -> None:
        await self.retry_client.close()
        if not self.session.closed:
            await self.session.close()


_http_client: HttpClient | None = None


def get_http_client() -> HttpClient:
    global _http_client
    if _http_client is None or _http_client.session.closed:
        session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
        _http_client = HttpClient(session=session, retry_client=RetryClient(client_session=session))
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is None:
        return
    client = _http_client
    _http_client = None
    await client.close()


def retry_options(attempts: int) -> ExponentialRetry:
    return ExponentialRetry(
        attempts=attempts,
        start_timeout=RETRY_START_TIMEOUT,
        max_timeout=RETRY_MAX_TIMEOUT,
        factor=2.0,
        statuses=RETRYABLE_STATUS,
        exceptions={aiohttp.ClientError, asyncio.TimeoutError},
        retry_all_server_errors=False,
    )


async def safe_json(resp: aiohttp.ClientResponse) -> JsonObject:
    try:
        data = await resp.json(content_type=None)
    except Exception:
        text = await resp.text()
        return {"error": {"message": text.strip()}}
    return data if isinstance(data, dict) else {"data": data}


def error_message(payload: JsonObject) -> str | None:
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("error_description")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(error, str) and error.strip():
        description = payload.get("error_description")
        if isinstance(description, str) and description.strip():
            return description.strip()
        return error.strip()
    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


async def get_json(
    url: str,
    *,
    headers: dict[str, str],
    timeout_seconds: float,
    max_retries: int,
    client: RetryClient | None = None,
) -> JsonObject:
    retry_client = client or get_http_client().retry_client
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with retry_client.request(
            "GET",
            url,
            headers=headers,
            timeout=timeout,
            retry_options=retry_options(max_retries + 1),
        ) as resp:
            data = await safe_json(resp)
            if resp.status >= 400:
                raise UsageFetchError(resp.status, error_message(data) or f"Request failed ({resp.status})")
            return data
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise UsageFetchError(0, f"Request failed: {exc}") from exc


def to_fetch_error(exc: UsageFetchError, *, source: str) -> FetchError:
    message = f"{source}: {exc.message}"
    if exc.status_code in (401, 403):
        return AuthenticationRequiredError(message)
    if exc.status_code == 404:
        return NotFoundError(message)
    if exc.status_code == 0:
        if isinstance(exc.__cause__, asyncio.TimeoutError):
            return FetchTimeoutError(message)
        return FetchError(message, code="network_error")
    return ProtocolError(message)
