from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from quotabar.core.fetch.context import FetchContext, SourceMode
from quotabar.core.fetch.pipeline import FetchOutcome, FetchPipeline
from quotabar.core.fetch.strategy import FetchResult


@dataclass(frozen=True, slots=True)
class ProviderDescriptor:
    id: str
    display_name: str
    cli_name: str
    pipeline: FetchPipeline
    source_modes: tuple[SourceMode, ...] = (SourceMode.AUTO,)
    aliases: tuple[str, ...] = field(default_factory=tuple)

    def supports(self, mode: SourceMode) -> bool:
        return mode in self.source_modes

    async def fetch_outcome(self, context: FetchContext) -> FetchOutcome:
        return await self.pipeline.fetch_outcome(context, provider=self.id)

    async def fetch(self, context: FetchContext) -> FetchResult:
        outcome = await self.fetch_outcome(context)
        return outcome.get()


class ProviderRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ordered: list[ProviderDescriptor] = []
        self._by_id: dict[str, ProviderDescriptor] = {}

    def register(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        with self._lock:
            existing = self._by_id.get(descriptor.id)
            if existing is None:
                self._ordered.append(descriptor)
            else:
                self._ordered[self._ordered.index(existing)] = descriptor
            self._by_id[descriptor.id] = descriptor
        return descriptor

    def all(self) -> list[ProviderDescriptor]:
        with self._lock:
            return list(self._ordered)

    def get(self, provider: str) -> ProviderDescriptor:
        with self._lock:
            found = self._by_id.get(provider)
            if found is not None:
                return found
            for descriptor in self._ordered:
                if provider == descriptor.cli_name or provider in descriptor.aliases:
                    return descriptor
        raise KeyError(f"Unknown provider: {provider}")

    async def fetch_all(
        self,
        context: FetchContext,
        providers: Iterable[str] | None = None,
    ) -> dict[str, FetchOutcome]:
        descriptors = self.all() if providers is None else [self.get(name) for name in providers]
        outcomes = await asyncio.gather(*(descriptor.fetch_outcome(context) for descriptor in descriptors))
        return {descriptor.id: outcome for descriptor, outcome in zip(descriptors, outcomes)}
