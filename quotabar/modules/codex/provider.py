from __future__ import annotations

from collections.abc import Sequence

from quotabar.core.fetch.context import FetchContext, SourceMode
from quotabar.core.fetch.pipeline import FetchPipeline
from quotabar.core.fetch.registry import ProviderDescriptor
from quotabar.core.fetch.strategy import FetchStrategy
from quotabar.modules.codex.strategies import CodexCLIStrategy, CodexOAuthStrategy, CodexRPCStrategy

CODEX_PROVIDER_ID = "codex"


def build_codex_provider(
    *,
    rpc: CodexRPCStrategy | None = None,
    cli: CodexCLIStrategy | None = None,
    oauth: CodexOAuthStrategy | None = None,
) -> ProviderDescriptor:
    strategies: tuple[FetchStrategy, ...] = (
        rpc or CodexRPCStrategy(),
        cli or CodexCLIStrategy(),
        oauth or CodexOAuthStrategy(),
    )

    def resolve(context: FetchContext) -> Sequence[FetchStrategy]:
        return strategies

    return ProviderDescriptor(
        id=CODEX_PROVIDER_ID,
        display_name="Codex",
        cli_name="codex",
        pipeline=FetchPipeline(resolve),
        source_modes=(SourceMode.AUTO, SourceMode.RPC, SourceMode.CLI, SourceMode.OAUTH),
        aliases=("openai", "chatgpt"),
    )
