from __future__ import annotations

import json

import pytest

from quotabar.cli import run
from quotabar.core.exceptions import NotFoundError
from quotabar.core.fetch.context import Interaction, Runtime, SourceMode
from quotabar.core.fetch.pipeline import FetchPipeline
from quotabar.core.fetch.registry import ProviderDescriptor, ProviderRegistry
from quotabar.core.fetch.strategy import FetchKind
from tests.support.fakes import FakeStrategy

pytestmark = pytest.mark.unit


class ContextRecorder(FakeStrategy):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.contexts = []

    async def is_available(self, context) -> bool:
        self.contexts.append(context)
        return await super().is_available(context)


def _registry(*descriptors: tuple[str, FakeStrategy]) -> ProviderRegistry:
    registry = ProviderRegistry()
    for provider_id, strategy in descriptors:
        registry.register(
            ProviderDescriptor(
                id=provider_id,
                display_name=provider_id.title(),
                cli_name=provider_id,
                pipeline=FetchPipeline(lambda context, strategy=strategy: [strategy]),
                source_modes=(SourceMode.AUTO, strategy.kind.source_mode),
            )
        )
    return registry


def test_text_output_and_success_exit(capsys):
    registry = _registry(("codex", FakeStrategy("codex.rpc", FetchKind.RPC)))

    code = run(["--provider", "codex"], registry=registry)

    out = capsys.readouterr().out
    assert code == 0
    assert "Codex (codex.rpc)" in out
    assert "12% used (88% left)" in out


def test_json_output_includes_errors_and_attempts(capsys):
    registry = _registry(
        ("codex", FakeStrategy("codex.rpc", FetchKind.RPC)),
        ("claude", FakeStrategy("claude.oauth", FetchKind.OAUTH, error=NotFoundError("no credentials"))),
    )

    code = run(["--format", "json"], registry=registry)

    payload = json.loads(capsys.readouterr().out)
    assert code == 1
    assert [entry["provider"] for entry in payload] == ["codex", "claude"]
    assert payload[0]["ok"] is True
    assert payload[0]["usage"]["primary"]["used_percent"] == 12.0
    assert "attempts" not in payload[0]
    assert payload[1]["error"] == {"code": "not_found", "message": "no credentials"}
    assert payload[1]["attempts"][0]["status"] == "failed"


def test_context_is_user_initiated_cli_runtime(capsys):
    strategy = ContextRecorder("codex.rpc", FetchKind.RPC)

    run(["--no-credits", "--timeout", "7", "--source", "rpc"], registry=_registry(("codex", strategy)))

    [context] = strategy.contexts
    assert context.runtime is Runtime.CLI
    assert context.interaction is Interaction.USER_INITIATED
    assert context.include_credits is False
    assert context.timeout_seconds == 7
    capsys.readouterr()


def test_verbose_text_prints_attempt_trace(capsys):
    run(["--verbose"], registry=_registry(("codex", FakeStrategy("codex.rpc", FetchKind.RPC))))
    assert "codex.rpc (rpc): succeeded" in capsys.readouterr().out


def test_failure_text_lists_attempts(capsys):
    registry = _registry(("claude", FakeStrategy("claude.oauth", FetchKind.OAUTH, available=False)))

    code = run([], registry=registry)

    out = capsys.readouterr().out
    assert code == 1
    assert out.startswith("Claude: error:")
    assert "claude.oauth (oauth): skipped" in out


def test_unknown_provider_exits_with_usage_error(capsys):
    assert run(["--provider", "gemini"], registry=_registry()) == 2
    assert "Unknown provider" in capsys.readouterr().err


def test_invalid_source_is_argument_error():
    with pytest.raises(SystemExit) as exc_info:
        run(["--source", "carrier-pigeon"], registry=_registry())
    assert exc_info.value.code == 2


def test_unsupported_source_for_provider_is_argument_error(capsys):
    strategy = FakeStrategy("codex.rpc", FetchKind.RPC)

    code = run(["--provider", "codex", "--source", "web"], registry=_registry(("codex", strategy)))

    assert code == 2
    assert "codex does not support source 'web'" in capsys.readouterr().err
    assert strategy.fetch_calls == 0


def test_all_providers_keeps_only_those_supporting_the_source(capsys):
    codex = FakeStrategy("codex.rpc", FetchKind.RPC)
    claude = FakeStrategy("claude.web", FetchKind.WEB)

    code = run(["--source", "web", "--format", "json"], registry=_registry(("codex", codex), ("claude", claude)))

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert [entry["provider"] for entry in payload] == ["claude"]
    assert codex.fetch_calls == 0
    assert claude.fetch_calls == 1
