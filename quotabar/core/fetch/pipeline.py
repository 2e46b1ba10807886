from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from quotabar.core.exceptions import FetchError, SourceUnavailableError
from quotabar.core.fetch.context import FetchContext, interaction_scope
from quotabar.core.fetch.strategy import FetchKind, FetchResult, FetchStrategy
from quotabar.core.types import JsonObject

logger = logging.getLogger(__name__)

StrategyResolver = Callable[[FetchContext], Sequence[FetchStrategy]]


class AttemptStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class FetchAttempt:
    strategy_id: str
    kind: FetchKind
    status: AttemptStatus
    duration_ms: float = 0.0
    error: FetchError | None = None

    def to_dict(self) -> JsonObject:
        return {
            "strategy": self.strategy_id,
            "kind": str(self.kind),
            "status": str(self.status),
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error.message if self.error else None,
        }


@dataclass(frozen=True, slots=True)
class FetchSuccess:
    value: FetchResult


@dataclass(frozen=True, slots=True)
class FetchFailure:
    error: FetchError


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    result: FetchSuccess | FetchFailure
    attempts: list[FetchAttempt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return isinstance(self.result, FetchSuccess)

    def get(self) -> FetchResult:
        if isinstance(self.result, FetchFailure):
            raise self.result.error
        return self.result.value

    def describe(self) -> list[str]:
        lines: list[str] = []
        for attempt in self.attempts:
            line = f"{attempt.strategy_id} ({attempt.kind}): {attempt.status}"
            if attempt.status is not AttemptStatus.SKIPPED:
                line += f" in {attempt.duration_ms:.0f}ms"
            if attempt.error is not None:
                line += f" - {attempt.error.message}"
            lines.append(line)
        return lines


class FetchPipeline:
    def __init__(self, resolve_strategies: StrategyResolver) -> None:
        self._resolve_strategies = resolve_strategies

    def candidates(self, context: FetchContext) -> list[FetchStrategy]:
        strategies = list(self._resolve_strategies(context))
        if not context.source_mode.is_explicit:
            return strategies
        for strategy in strategies:
            if strategy.kind.source_mode is context.source_mode:
                return [strategy]
        return []

    async def fetch_outcome(self, context: FetchContext, *, provider: str) -> FetchOutcome:
        with interaction_scope(context.effective_interaction):
            return await self._run(context, provider)

    async def _run(self, context: FetchContext, provider: str) -> FetchOutcome:
        candidates = self.candidates(context)
        attempts: list[FetchAttempt] = []
        if not candidates:
            error = SourceUnavailableError(
                f"{provider} does not support source mode '{context.source_mode}'"
            )
            return FetchOutcome(result=FetchFailure(error), attempts=attempts)

        last_error: FetchError | None = None
        for strategy in candidates:
            started = time.monotonic()
            try:
                if not await strategy.is_available(context):
                    logger.debug("Fetch strategy skipped provider=%s strategy=%s", provider, strategy.id)
                    attempts.append(FetchAttempt(strategy.id, strategy.kind, AttemptStatus.SKIPPED))
                    continue
                result = await strategy.fetch(context)
            except FetchError as exc:
                error = exc
            except Exception as exc:
                error = FetchError(f"{strategy.id} failed: {exc}")
                error.__cause__ = exc
            else:
                duration_ms = (time.monotonic() - started) * 1000
                attempts.append(
                    FetchAttempt(strategy.id, strategy.kind, AttemptStatus.SUCCEEDED, duration_ms)
                )
                logger.info(
                    "Fetch succeeded provider=%s strategy=%s duration_ms=%.1f",
                    provider,
                    strategy.id,
                    duration_ms,
                )
                return FetchOutcome(result=FetchSuccess(result), attempts=attempts)

            duration_ms = (time.monotonic() - started) * 1000
            attempts.append(
                FetchAttempt(strategy.id, strategy.kind, AttemptStatus.FAILED, duration_ms, error)
            )
            last_error = error
            fallback = strategy.should_fallback(error, context)
            logger.warning(
                "Fetch failed provider=%s strategy=%s code=%s fallback=%s error=%s",
                provider,
                strategy.id,
                error.code,
                fallback,
                error.message,
            )
            if not fallback:
                break

        if last_error is None:
            last_error = SourceUnavailableError(f"No {provider} usage source is available")
        return FetchOutcome(result=FetchFailure(last_error), attempts=attempts)
