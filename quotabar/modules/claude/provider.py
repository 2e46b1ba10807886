from __future__ import annotations

from collections.abc import Sequence

from quotabar.core.fetch.context import FetchContext, Runtime, SourceMode
from quotabar.core.fetch.pipeline import FetchPipeline
from quotabar.core.fetch.registry import ProviderDescriptor
from quotabar.core.fetch.strategy import FetchStrategy
from quotabar.modules.claude.strategies import ClaudeCLIStrategy, ClaudeOAuthStrategy, ClaudeWebStrategy

CLAUDE_PROVIDER_ID = "claude"


def build_claude_provider(
    *,
    oauth: ClaudeOAuthStrategy | None = None,
    web: ClaudeWebStrategy | None = None,
    cli: ClaudeCLIStrategy | None = None,
) -> ProviderDescriptor:
    oauth_strategy = oauth or ClaudeOAuthStrategy()
    web_strategy = web or ClaudeWebStrategy()
    cli_strategy = cli or ClaudeCLIStrategy()

    def resolve(context: FetchContext) -> Sequence[FetchStrategy]:
        # Terminal runs try the CLI before the claude.ai cookie.
        if context.runtime is Runtime.CLI:
            return (oauth_strategy, cli_strategy, web_strategy)
        return (oauth_strategy, web_strategy, cli_strategy)

    return ProviderDescriptor(
        id=CLAUDE_PROVIDER_ID,
        display_name="Claude",
        cli_name="claude",
        pipeline=FetchPipeline(resolve),
        source_modes=(SourceMode.AUTO, SourceMode.OAUTH, SourceMode.WEB, SourceMode.CLI),
        aliases=("anthropic",),
    )
