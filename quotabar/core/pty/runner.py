from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Mapping, Sequence

from quotabar.core.exceptions import BinaryNotFoundError
from quotabar.core.pty.driver import PTYCommandDriver, PTYOptions, PTYResult, PTYState
from quotabar.core.pty.process import PTYProcess
from quotabar.core.utils.paths import seeded_path, which

logger = logging.getLogger(__name__)

Spawner = Callable[..., Awaitable[PTYProcess]]


class PTYRunner:
    """Runs an interactive CLI inside a pseudo-terminal and returns the captured text."""

    def __init__(self, *, spawn: Spawner | None = None) -> None:
        self._spawn = spawn or PTYProcess.spawn

    async def run(self, binary: str, script: str, options: PTYOptions | None = None) -> PTYResult:
        options = options or PTYOptions()
        env = build_environment(options.env)
        resolved = which(binary, env)
        if resolved is None:
            raise BinaryNotFoundError(binary)

        argv: Sequence[str] = [resolved, *options.extra_args]
        process = await self._spawn(argv, env=env, rows=options.rows, cols=options.cols)
        driver = PTYCommandDriver(process, script, options)
        logger.debug("PTY child started binary=%s pid=%s pgid=%s", resolved, process.pid, process.process_group)
        try:
            return await driver.run()
        finally:
            driver.transition(PTYState.TEARDOWN)
            # Shielded so a second cancellation cannot leave the child or its descriptors behind.
            await asyncio.shield(process.terminate(exit_command=options.exit_command))


def build_environment(base: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["PATH"] = seeded_path(env)
    env.setdefault("TERM", "xterm-256color")
    return env
