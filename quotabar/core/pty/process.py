from __future__ import annotations

import asyncio
import contextlib
import fcntl
import logging
import os
import pty
import signal
import struct
import termios
from collections.abc import Mapping, Sequence

from quotabar.core.exceptions import LaunchFailedError

logger = logging.getLogger(__name__)

_READ_CHUNK = 8192


class PTYProcess:
    """A child process attached to the terminal side of a pseudo-terminal pair."""

    def __init__(
        self,
        *,
        primary_fd: int,
        secondary_fd: int,
        process: asyncio.subprocess.Process,
        process_group: int | None,
    ) -> None:
        self.primary_fd = primary_fd
        self.secondary_fd = secondary_fd
        self.process = process
        self.process_group = process_group
        self._closed = False

    @classmethod
    async def spawn(
        cls,
        argv: Sequence[str],
        *,
        env: Mapping[str, str],
        rows: int,
        cols: int,
    ) -> PTYProcess:
        try:
            primary_fd, secondary_fd = pty.openpty()
        except OSError as exc:
            raise LaunchFailedError(f"openpty failed: {exc}") from exc

        try:
            fcntl.ioctl(secondary_fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
            os.set_blocking(primary_fd, False)
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=secondary_fd,
                stdout=secondary_fd,
                stderr=secondary_fd,
                env=dict(env),
                start_new_session=True,
            )
        except OSError as exc:
            _close_fd(primary_fd)
            _close_fd(secondary_fd)
            raise LaunchFailedError(str(exc)) from exc
        except BaseException:
            _close_fd(primary_fd)
            _close_fd(secondary_fd)
            raise

        return cls(
            primary_fd=primary_fd,
            secondary_fd=secondary_fd,
            process=process,
            process_group=_own_process_group(process.pid),
        )

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_running(self) -> bool:
        return self.process.returncode is None

    @property
    def closed(self) -> bool:
        return self._closed

    def read_available(self) -> bytes:
        if self._closed:
            return b""
        chunks: list[bytes] = []
        while True:
            try:
                chunk = os.read(self.primary_fd, _READ_CHUNK)
            except BlockingIOError:
                break
            except OSError:
                # EIO once the child side has gone away
                break
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def write(self, data: bytes) -> None:
        if self._closed:
            raise OSError("pseudo-terminal is closed")
        os.write(self.primary_fd, data)

    async def terminate(self, *, exit_command: str | None = "/exit\n", grace_seconds: float = 2.0) -> None:
        if self._closed:
            return
        self._closed = True

        if exit_command and self.is_running:
            with contextlib.suppress(OSError):
                os.write(self.primary_fd, exit_command.encode("utf-8"))

        _close_fd(self.primary_fd)
        _close_fd(self.secondary_fd)

        if self.is_running:
            with contextlib.suppress(ProcessLookupError):
                self.process.terminate()
        self._signal_group(signal.SIGTERM)

        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace_seconds)
        except TimeoutError:
            logger.warning("PTY child ignored SIGTERM pid=%s pgid=%s", self.pid, self.process_group)
            self._signal_group(signal.SIGKILL)
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            await self.process.wait()

    def _signal_group(self, signum: signal.Signals) -> None:
        if self.process_group is None:
            return
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(self.process_group, signum)


def _own_process_group(pid: int) -> int | None:
    try:
        pgid = os.getpgid(pid)
    except OSError:
        return None
    # Only signal the group when the child leads it; otherwise we would hit our own group.
    if pgid != pid:
        logger.debug("PTY child is not a process group leader pid=%s pgid=%s", pid, pgid)
        return None
    return pgid


def _close_fd(fd: int) -> None:
    with contextlib.suppress(OSError):
        os.close(fd)
