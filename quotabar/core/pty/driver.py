from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from quotabar.core.exceptions import PTYTimeoutError

logger = logging.getLogger(__name__)

CURSOR_POSITION_QUERY = b"\x1b[6n"
CURSOR_POSITION_REPLY = b"\x1b[1;1R"

_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


class PTYState(StrEnum):
    BOOT = "boot"
    BOOTSTRAP = "bootstrap"
    SEND_COMMAND = "send_command"
    AWAIT_MARKER = "await_marker"
    SETTLE = "settle"
    TEARDOWN = "teardown"


class TerminalTransport(Protocol):
    def read_available(self) -> bytes: ...

    def write(self, data: bytes) -> None: ...


OutputGuard = Callable[[str], None]


@dataclass(slots=True)
class PTYOptions:
    rows: int = 50
    cols: int = 160
    timeout: float = 20.0
    extra_args: tuple[str, ...] = ()
    env: Mapping[str, str] | None = None
    completion_markers: tuple[str, ...] = ()
    update_markers: tuple[str, ...] = ()
    # Assumes the "Update now / Skip / Skip until next version" menu layout.
    update_dismiss_keys: tuple[str, ...] = ("\x1b[B", "\r", "\r")
    output_guard: OutputGuard | None = None
    exit_command: str | None = "/exit\n"
    bootstrap_grace: float = 0.4
    poll_interval: float = 0.12
    send_pause: float = 0.2
    idle_enter_after: float = 1.2
    max_enter_retries: int = 6
    resend_after: float = 3.0
    max_resends: int = 2
    settle_seconds: float = 2.0
    settle_poll_interval: float = 0.1


@dataclass(frozen=True, slots=True)
class PTYResult:
    text: str
    saw_marker: bool


@dataclass(slots=True)
class _Counters:
    enter_retries: int = 0
    resends: int = 0
    update_dismissals: int = 0
    cursor_replies: int = 0
    transitions: list[PTYState] = field(default_factory=list)


class PTYCommandDriver:
    """Sends one command to an interactive CLI and waits for its output.

    Runs BOOTSTRAP -> SEND_COMMAND -> AWAIT_MARKER -> SETTLE against any
    TerminalTransport; BOOT and TEARDOWN belong to the owner of the transport.
    Every retry path is bounded by a counter in ``PTYOptions``.
    """

    def __init__(
        self,
        transport: TerminalTransport,
        script: str,
        options: PTYOptions,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._script = script
        self._options = options
        self._clock = clock
        self._sleep = sleep
        self._buffer = bytearray()
        self._answered_queries = 0
        self.state = PTYState.BOOT
        self.counters = _Counters()

    @property
    def text(self) -> str:
        return self._buffer.decode("utf-8", errors="replace")

    def transition(self, state: PTYState) -> None:
        if state is self.state:
            return
        logger.debug("PTY state %s -> %s", self.state, state)
        self.state = state
        self.counters.transitions.append(state)

    async def run(self) -> PTYResult:
        options = self._options
        self.transition(PTYState.BOOTSTRAP)
        await self._sleep(options.bootstrap_grace)

        deadline = self._clock() + options.timeout
        self.transition(PTYState.SEND_COMMAND)
        sent_at: float | None = None
        last_enter = float("-inf")
        saw_marker = False

        while self._clock() < deadline:
            self._pump()
            if self._has_completion_marker():
                saw_marker = True
                break

            if self.counters.update_dismissals == 0 and self._has_update_prompt():
                await self._dismiss_update_prompt()
                sent_at = None
                self.transition(PTYState.SEND_COMMAND)
                continue

            now = self._clock()
            if sent_at is None:
                self._send(self._script + "\r")
                sent_at = now
                last_enter = now
                self.transition(PTYState.AWAIT_MARKER)
                await self._sleep(options.send_pause)
                continue

            if now - last_enter >= options.idle_enter_after and self.counters.enter_retries < options.max_enter_retries:
                self._send("\r")
                self.counters.enter_retries += 1
                last_enter = now
                await self._sleep(options.poll_interval)
                continue

            if now - sent_at >= options.resend_after and self.counters.resends < options.max_resends:
                self._reset_buffer()
                self._send(self._script + "\r")
                self.counters.resends += 1
                sent_at = now
                last_enter = now
                await self._sleep(options.send_pause)
                continue

            await self._sleep(options.poll_interval)

        if saw_marker:
            self.transition(PTYState.SETTLE)
            settle_deadline = self._clock() + options.settle_seconds
            while self._clock() < settle_deadline:
                self._pump()
                await self._sleep(options.settle_poll_interval)
            return PTYResult(text=self.text, saw_marker=True)

        text = self.text
        if options.completion_markers or not text:
            logger.warning(
                "PTY command timed out script=%r bytes=%d enter_retries=%d resends=%d",
                self._script,
                len(self._buffer),
                self.counters.enter_retries,
                self.counters.resends,
            )
            raise PTYTimeoutError()
        return PTYResult(text=text, saw_marker=False)

    def _pump(self) -> None:
        chunk = self._transport.read_available()
        if not chunk:
            return
        self._buffer.extend(chunk)
        self._answer_cursor_queries()
        guard = self._options.output_guard
        if guard is not None:
            guard(strip_ansi(self.text))

    def _answer_cursor_queries(self) -> None:
        seen = self._buffer.count(CURSOR_POSITION_QUERY)
        while self._answered_queries < seen:
            self._write(CURSOR_POSITION_REPLY)
            self._answered_queries += 1
            self.counters.cursor_replies += 1

    def _has_completion_marker(self) -> bool:
        return self._contains_any(self._options.completion_markers, case_sensitive=True)

    def _has_update_prompt(self) -> bool:
        return self._contains_any(self._options.update_markers, case_sensitive=False)

    def _contains_any(self, needles: tuple[str, ...], *, case_sensitive: bool) -> bool:
        if not needles:
            return False
        raw = self.text
        stripped = strip_ansi(raw)
        if not case_sensitive:
            raw, stripped = raw.lower(), stripped.lower()
        for needle in needles:
            probe = needle if case_sensitive else needle.lower()
            if probe in raw or probe in stripped:
                return True
        return False

    async def _dismiss_update_prompt(self) -> None:
        logger.info("Dismissing CLI update prompt keys=%r", self._options.update_dismiss_keys)
        for key in self._options.update_dismiss_keys:
            self._send(key)
            await self._sleep(self._options.poll_interval)
        self.counters.update_dismissals += 1
        self._reset_buffer()
        await self._sleep(self._options.send_pause)

    def _reset_buffer(self) -> None:
        self._buffer.clear()
        self._answered_queries = 0

    def _send(self, text: str) -> None:
        self._write(text.encode("utf-8"))

    def _write(self, data: bytes) -> None:
        try:
            self._transport.write(data)
        except OSError as exc:
            logger.debug("PTY write failed error=%s", exc)
