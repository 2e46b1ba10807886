from __future__ import annotations

import pytest

from quotabar.core.exceptions import NotFoundError
from quotabar.core.fetch.context import FetchContext, SourceMode
from quotabar.core.fetch.pipeline import FetchPipeline
from quotabar.core.fetch.registry import ProviderDescriptor, ProviderRegistry
from quotabar.core.fetch.strategy import FetchKind
from quotabar.modules.providers import get_provider_registry
from tests.support.fakes import FakeStrategy

pytestmark = pytest.mark.unit


def _descriptor(provider_id: str, *strategies: FakeStrategy, aliases: tuple[str, ...] = ()) -> ProviderDescriptor:
    return ProviderDescriptor(
        id=provider_id,
        display_name=provider_id.title(),
        cli_name=provider_id,
        pipeline=FetchPipeline(lambda context: strategies),
        aliases=aliases,
    )


def test_register_keeps_order_and_replaces_duplicates():
    registry = ProviderRegistry()
    registry.register(_descriptor("codex"))
    registry.register(_descriptor("claude"))
    replacement = registry.register(_descriptor("codex", aliases=("openai",)))

    assert [descriptor.id for descriptor in registry.all()] == ["codex", "claude"]
    assert registry.get("codex") is replacement
    assert registry.get("openai") is replacement


def test_get_unknown_provider_raises_key_error():
    with pytest.raises(KeyError):
        ProviderRegistry().get("gemini")


@pytest.mark.asyncio
async def test_fetch_all_returns_outcome_per_provider():
    registry = ProviderRegistry()
    registry.register(_descriptor("codex", FakeStrategy("codex.rpc", FetchKind.RPC)))
    registry.register(
        _descriptor("claude", FakeStrategy("claude.oauth", FetchKind.OAUTH, error=NotFoundError("none")))
    )

    outcomes = await registry.fetch_all(FetchContext())

    assert list(outcomes) == ["codex", "claude"]
    assert outcomes["codex"].ok
    assert not outcomes["claude"].ok


def test_default_registry_lists_codex_then_claude():
    registry = get_provider_registry()
    assert [descriptor.id for descriptor in registry.all()] == ["codex", "claude"]
    assert registry.get("anthropic").id == "claude"
    assert registry.get("codex").supports(SourceMode.RPC)
    assert not registry.get("claude").supports(SourceMode.RPC)
