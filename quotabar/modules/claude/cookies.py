from __future__ import annotations

from typing import Protocol

from quotabar.core.config.settings import get_settings
from quotabar.core.fetch.context import FetchContext

SESSION_COOKIE = "sessionKey"


class CookieHeaderProvider(Protocol):
    """Supplies a ``Cookie`` header for claude.ai; how it is obtained is up to the implementation."""

    source_label: str

    def available(self, context: FetchContext) -> bool: ...

    async def cookie_header(self, context: FetchContext) -> str | None: ...


class SettingsCookieHeaderProvider:
    source_label = "manual"

    def available(self, context: FetchContext) -> bool:
        return self._header() is not None

    async def cookie_header(self, context: FetchContext) -> str | None:
        return self._header()

    def _header(self) -> str | None:
        return normalize_cookie_header(get_settings().claude_cookie_header)


class StaticCookieHeaderProvider:
    def __init__(self, header: str | None, *, source_label: str = "static") -> None:
        self._header = normalize_cookie_header(header)
        self.source_label = source_label

    def available(self, context: FetchContext) -> bool:
        return self._header is not None

    async def cookie_header(self, context: FetchContext) -> str | None:
        return self._header


def normalize_cookie_header(value: str | None) -> str | None:
    if value is None:
        return None
    header = value.strip()
    if header.lower().startswith("cookie:"):
        header = header[len("cookie:") :].strip()
    if not header:
        return None
    if "=" not in header:
        return f"{SESSION_COOKIE}={header}"
    return header
