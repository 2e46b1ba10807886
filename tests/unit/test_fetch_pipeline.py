from __future__ import annotations

import pytest

from quotabar.core.exceptions import (
    MisconfigurationError,
    NotFoundError,
    ProtocolError,
    SourceUnavailableError,
)
from quotabar.core.fetch.context import FetchContext, Interaction, SourceMode, get_interaction
from quotabar.core.fetch.pipeline import AttemptStatus, FetchFailure, FetchPipeline, FetchSuccess
from quotabar.core.fetch.strategy import FetchKind, FetchStrategy, default_should_fallback
from tests.support.fakes import FakeStrategy

pytestmark = pytest.mark.unit


def _pipeline(*strategies: FakeStrategy) -> FetchPipeline:
    return FetchPipeline(lambda context: strategies)


def test_fake_strategy_satisfies_protocol():
    assert isinstance(FakeStrategy("x", FetchKind.RPC), FetchStrategy)


@pytest.mark.asyncio
async def test_first_success_wins_and_later_strategies_do_not_run():
    first = FakeStrategy("a.rpc", FetchKind.RPC)
    second = FakeStrategy("a.cli", FetchKind.CLI_PTY)

    outcome = await _pipeline(first, second).fetch_outcome(FetchContext(), provider="a")

    assert outcome.ok
    assert outcome.get().strategy_id == "a.rpc"
    assert second.fetch_calls == 0
    assert [attempt.status for attempt in outcome.attempts] == [AttemptStatus.SUCCEEDED]


@pytest.mark.asyncio
async def test_recoverable_failure_falls_back_to_next_strategy():
    failing = FakeStrategy("a.rpc", FetchKind.RPC, error=NotFoundError("missing"))
    working = FakeStrategy("a.cli", FetchKind.CLI_PTY)

    outcome = await _pipeline(failing, working).fetch_outcome(FetchContext(), provider="a")

    assert isinstance(outcome.result, FetchSuccess)
    assert outcome.result.value.strategy_kind is FetchKind.CLI_PTY
    assert [attempt.status for attempt in outcome.attempts] == [AttemptStatus.FAILED, AttemptStatus.SUCCEEDED]
    assert outcome.attempts[0].error is not None
    assert outcome.attempts[0].error.code == "not_found"


@pytest.mark.asyncio
async def test_fallback_refusal_stops_after_one_attempt():
    failing = FakeStrategy("a.rpc", FetchKind.RPC, error=ProtocolError("bad"), fallback=False)
    never = FakeStrategy("a.cli", FetchKind.CLI_PTY)

    outcome = await _pipeline(failing, never).fetch_outcome(FetchContext(), provider="a")

    assert not outcome.ok
    assert len(outcome.attempts) == 1
    assert never.fetch_calls == 0
    with pytest.raises(ProtocolError):
        outcome.get()


@pytest.mark.asyncio
async def test_non_recoverable_error_does_not_fall_back():
    failing = FakeStrategy("a.rpc", FetchKind.RPC, error=MisconfigurationError())
    never = FakeStrategy("a.cli", FetchKind.CLI_PTY)

    outcome = await _pipeline(failing, never).fetch_outcome(FetchContext(), provider="a")

    assert isinstance(outcome.result, FetchFailure)
    assert outcome.result.error.code == "misconfigured"
    assert never.fetch_calls == 0


@pytest.mark.asyncio
async def test_explicit_source_mode_runs_only_matching_strategy():
    rpc = FakeStrategy("a.rpc", FetchKind.RPC)
    cli = FakeStrategy("a.cli", FetchKind.CLI_PTY, error=NotFoundError("no binary"))
    context = FetchContext(source_mode=SourceMode.CLI)

    outcome = await _pipeline(rpc, cli).fetch_outcome(context, provider="a")

    assert rpc.fetch_calls == 0
    assert cli.fetch_calls == 1
    assert not outcome.ok
    assert len(outcome.attempts) == 1


@pytest.mark.asyncio
async def test_explicit_source_mode_without_match_is_source_unavailable():
    outcome = await _pipeline(FakeStrategy("a.rpc", FetchKind.RPC)).fetch_outcome(
        FetchContext(source_mode=SourceMode.WEB), provider="a"
    )
    assert isinstance(outcome.result, FetchFailure)
    assert isinstance(outcome.result.error, SourceUnavailableError)
    assert outcome.attempts == []


@pytest.mark.asyncio
async def test_unavailable_strategies_are_recorded_as_skipped():
    skipped = FakeStrategy("a.rpc", FetchKind.RPC, available=False)
    working = FakeStrategy("a.oauth", FetchKind.OAUTH)

    outcome = await _pipeline(skipped, working).fetch_outcome(FetchContext(), provider="a")

    assert skipped.fetch_calls == 0
    assert [attempt.status for attempt in outcome.attempts] == [AttemptStatus.SKIPPED, AttemptStatus.SUCCEEDED]
    assert "skipped" in outcome.describe()[0]


@pytest.mark.asyncio
async def test_all_skipped_is_source_unavailable():
    outcome = await _pipeline(
        FakeStrategy("a.rpc", FetchKind.RPC, available=False),
        FakeStrategy("a.cli", FetchKind.CLI_PTY, available=False),
    ).fetch_outcome(FetchContext(), provider="a")

    with pytest.raises(SourceUnavailableError):
        outcome.get()


@pytest.mark.asyncio
async def test_exhausted_pipeline_returns_last_error():
    outcome = await _pipeline(
        FakeStrategy("a.rpc", FetchKind.RPC, error=NotFoundError("first")),
        FakeStrategy("a.cli", FetchKind.CLI_PTY, error=ProtocolError("second")),
    ).fetch_outcome(FetchContext(), provider="a")

    assert isinstance(outcome.result, FetchFailure)
    assert outcome.result.error.message == "second"
    assert len(outcome.attempts) == 2


@pytest.mark.asyncio
async def test_unexpected_exception_is_wrapped_with_cause():
    boom = RuntimeError("boom")
    outcome = await _pipeline(FakeStrategy("a.rpc", FetchKind.RPC, error=boom)).fetch_outcome(
        FetchContext(), provider="a"
    )

    assert isinstance(outcome.result, FetchFailure)
    assert outcome.result.error.__cause__ is boom
    assert "boom" in outcome.result.error.message


@pytest.mark.asyncio
async def test_availability_check_error_is_recorded_and_falls_back():
    denied = PermissionError(13, "Permission denied", "/home/user/.claude")
    broken = FakeStrategy("a.oauth", FetchKind.OAUTH, availability_error=denied)
    working = FakeStrategy("a.cli", FetchKind.CLI_PTY)

    outcome = await _pipeline(broken, working).fetch_outcome(FetchContext(), provider="a")

    assert outcome.ok
    assert outcome.get().strategy_id == "a.cli"
    assert broken.fetch_calls == 0
    assert [attempt.status for attempt in outcome.attempts] == [AttemptStatus.FAILED, AttemptStatus.SUCCEEDED]
    assert outcome.attempts[0].error is not None
    assert outcome.attempts[0].error.__cause__ is denied


@pytest.mark.asyncio
async def test_non_recoverable_availability_error_stops_pipeline():
    broken = FakeStrategy("a.oauth", FetchKind.OAUTH, availability_error=MisconfigurationError("bad path"))
    never = FakeStrategy("a.cli", FetchKind.CLI_PTY)

    outcome = await _pipeline(broken, never).fetch_outcome(FetchContext(), provider="a")

    assert isinstance(outcome.result, FetchFailure)
    assert isinstance(outcome.result.error, MisconfigurationError)
    assert never.fetch_calls == 0
    assert [attempt.status for attempt in outcome.attempts] == [AttemptStatus.FAILED]


@pytest.mark.asyncio
async def test_pipeline_is_deterministic_for_same_inputs():
    def build() -> FetchPipeline:
        return _pipeline(
            FakeStrategy("a.rpc", FetchKind.RPC, error=NotFoundError("x")),
            FakeStrategy("a.cli", FetchKind.CLI_PTY, available=False),
            FakeStrategy("a.oauth", FetchKind.OAUTH),
        )

    first = await build().fetch_outcome(FetchContext(), provider="a")
    second = await build().fetch_outcome(FetchContext(), provider="a")

    assert [(a.strategy_id, a.status) for a in first.attempts] == [(a.strategy_id, a.status) for a in second.attempts]
    assert first.get().strategy_id == second.get().strategy_id == "a.oauth"


@pytest.mark.asyncio
async def test_context_interaction_is_visible_to_strategies():
    strategy = FakeStrategy("a.rpc", FetchKind.RPC)
    context = FetchContext(interaction=Interaction.USER_INITIATED)

    await _pipeline(strategy).fetch_outcome(context, provider="a")

    assert strategy.seen_interaction is Interaction.USER_INITIATED
    assert get_interaction() is Interaction.BACKGROUND


def test_default_fallback_is_disabled_in_explicit_mode():
    error = NotFoundError()
    assert default_should_fallback(error, FetchContext()) is True
    assert default_should_fallback(error, FetchContext(source_mode=SourceMode.RPC)) is False
