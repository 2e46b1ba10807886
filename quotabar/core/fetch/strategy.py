from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable

from quotabar.core.exceptions import FetchError
from quotabar.core.fetch.context import FetchContext, SourceMode
from quotabar.core.usage.types import CreditsSnapshot, UsageSnapshot


class FetchKind(StrEnum):
    RPC = "rpc"
    CLI_PTY = "cli-pty"
    WEB = "web"
    OAUTH = "oauth"

    @property
    def source_mode(self) -> SourceMode:
        return _KIND_TO_SOURCE[self]


_KIND_TO_SOURCE = {
    FetchKind.RPC: SourceMode.RPC,
    FetchKind.CLI_PTY: SourceMode.CLI,
    FetchKind.WEB: SourceMode.WEB,
    FetchKind.OAUTH: SourceMode.OAUTH,
}


@dataclass(frozen=True, slots=True)
class FetchResult:
    usage: UsageSnapshot
    source_label: str
    strategy_id: str
    strategy_kind: FetchKind
    credits: CreditsSnapshot | None = None


@runtime_checkable
class FetchStrategy(Protocol):
    id: str
    kind: FetchKind

    async def is_available(self, context: FetchContext) -> bool: ...

    async def fetch(self, context: FetchContext) -> FetchResult: ...

    def should_fallback(self, error: FetchError, context: FetchContext) -> bool: ...


def default_should_fallback(error: FetchError, context: FetchContext) -> bool:
    if context.source_mode.is_explicit:
        return False
    return error.recoverable


def make_result(
    strategy: FetchStrategy,
    *,
    usage: UsageSnapshot,
    source_label: str,
    credits: CreditsSnapshot | None = None,
) -> FetchResult:
    return FetchResult(
        usage=usage,
        source_label=source_label,
        strategy_id=strategy.id,
        strategy_kind=strategy.kind,
        credits=credits,
    )
