from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import StrEnum

from quotabar.core.config.settings import get_settings


class Runtime(StrEnum):
    CLI = "cli"
    APP = "app"


class SourceMode(StrEnum):
    AUTO = "auto"
    RPC = "rpc"
    CLI = "cli"
    WEB = "web"
    OAUTH = "oauth"

    @property
    def is_explicit(self) -> bool:
        return self is not SourceMode.AUTO


class Interaction(StrEnum):
    BACKGROUND = "background"
    USER_INITIATED = "user_initiated"


_INTERACTION: ContextVar[Interaction] = ContextVar("interaction", default=Interaction.BACKGROUND)


def get_interaction() -> Interaction:
    return _INTERACTION.get()


@contextmanager
def interaction_scope(value: Interaction) -> Iterator[None]:
    token = _INTERACTION.set(value)
    try:
        yield
    finally:
        _INTERACTION.reset(token)


@dataclass(frozen=True, slots=True)
class FetchContext:
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    timeout_seconds: float = field(default_factory=lambda: get_settings().fetch_timeout_seconds)
    runtime: Runtime = Runtime.APP
    source_mode: SourceMode = SourceMode.AUTO
    interaction: Interaction | None = None
    include_credits: bool = True
    verbose: bool = False

    @property
    def effective_interaction(self) -> Interaction:
        if self.interaction is not None:
            return self.interaction
        return get_interaction()
