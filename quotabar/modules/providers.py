from __future__ import annotations

from functools import lru_cache

from quotabar.core.fetch.registry import ProviderRegistry
from quotabar.modules.claude.provider import build_claude_provider
from quotabar.modules.codex.provider import build_codex_provider


def build_provider_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(build_codex_provider())
    registry.register(build_claude_provider())
    return registry


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    return build_provider_registry()
