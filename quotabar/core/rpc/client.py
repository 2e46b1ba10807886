from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import Protocol

import anyio
from pydantic import BaseModel, ValidationError

from quotabar.core.exceptions import LaunchFailedError, RPCProtocolError, RPCRequestError
from quotabar.core.types import JsonObject, JsonValue
from quotabar.core.usage.models import RPCAccountResponse, RPCRateLimitsResponse
from quotabar.core.utils.paths import seeded_path, which

logger = logging.getLogger(__name__)

_STREAM_LIMIT = 4 * 1024 * 1024


class LineWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class RPCClient:
    """Line-delimited JSON-RPC over a child process's stdin/stdout.

    The child answers on a single stdout stream, so requests are serialized:
    a second caller waits until the first has seen its response.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: LineWriter,
        *,
        process: asyncio.subprocess.Process | None = None,
        name: str = "rpc",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._process = process
        self._name = name
        self._next_id = 1
        self._lock = anyio.Lock()
        self._stderr_task: asyncio.Task[None] | None = None

    @classmethod
    async def start(
        cls,
        executable: str,
        arguments: Sequence[str] = (),
        *,
        env: Mapping[str, str] | None = None,
    ) -> RPCClient:
        child_env = dict(os.environ if env is None else env)
        child_env["PATH"] = seeded_path(child_env)
        resolved = which(executable, child_env) or executable
        try:
            process = await asyncio.create_subprocess_exec(
                resolved,
                *arguments,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_env,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise LaunchFailedError(f"{executable}: {exc}") from exc

        assert process.stdin is not None and process.stdout is not None
        client = cls(process.stdout, process.stdin, process=process, name=os.path.basename(executable))
        if process.stderr is not None:
            client._stderr_task = asyncio.create_task(client._drain_stderr(process.stderr))
        logger.debug("RPC child started executable=%s pid=%s", resolved, process.pid)
        return client

    async def __aenter__(self) -> RPCClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def initialize(self, client_name: str, client_version: str) -> JsonValue:
        result = await self.request(
            "initialize",
            {"clientInfo": {"name": client_name, "version": client_version}},
        )
        await self.notify("initialized")
        return result

    async def read_account(self) -> RPCAccountResponse:
        result = await self.request("account/read")
        return _validate(RPCAccountResponse, result)

    async def read_rate_limits(self) -> RPCRateLimitsResponse:
        result = await self.request("account/rateLimits/read")
        return _validate(RPCRateLimitsResponse, result)

    async def request(self, method: str, params: JsonObject | None = None) -> JsonValue:
        async with self._lock:
            request_id = self._next_id
            self._next_id += 1
            await self._send({"id": request_id, "method": method, "params": params or {}})

            while True:
                message = await self._read_message()
                message_id = message.get("id")
                if message_id is None:
                    logger.debug("RPC notification name=%s method=%s", self._name, message.get("method"))
                    continue
                if _json_id(message_id) != request_id:
                    logger.debug(
                        "RPC response discarded name=%s expected_id=%s got_id=%s",
                        self._name,
                        request_id,
                        message_id,
                    )
                    continue

                error = message.get("error")
                if error is not None:
                    raise RPCRequestError(_error_message(error))
                if "result" not in message:
                    raise RPCProtocolError("missing result field")
                return message["result"]

    async def notify(self, method: str, params: JsonObject | None = None) -> None:
        async with self._lock:
            await self._send({"method": method, "params": params or {}})

    async def shutdown(self, *, grace_seconds: float = 2.0) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=grace_seconds)
            except TimeoutError:
                logger.warning("RPC child ignored SIGTERM name=%s pid=%s", self._name, process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        task = self._stderr_task
        self._stderr_task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _send(self, payload: JsonObject) -> None:
        line = json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n"
        try:
            self._writer.write(line)
            await self._writer.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise RPCProtocolError(f"{self._name} closed stdin") from exc

    async def _read_message(self) -> JsonObject:
        while True:
            try:
                line = await self._reader.readline()
            except ValueError as exc:
                raise RPCProtocolError(f"{self._name} sent an oversized line") from exc
            if not line:
                raise RPCProtocolError(f"{self._name} closed stdout")
            stripped = line.strip()
            if not stripped:
                continue
            try:
                decoded = json.loads(stripped)
            except json.JSONDecodeError:
                logger.debug("RPC non-JSON line skipped name=%s line=%r", self._name, stripped[:200])
                continue
            if isinstance(decoded, dict):
                return decoded

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.debug("[%s stderr] oversized line dropped", self._name)
                continue
            if not line:
                # EOF: stop instead of re-polling a closed stream.
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug("[%s stderr] %s", self._name, text)


def _validate[ModelT: BaseModel](model: type[ModelT], result: JsonValue) -> ModelT:
    try:
        return model.model_validate(result)
    except ValidationError as exc:
        raise RPCProtocolError(f"unexpected {model.__name__} payload") from exc


def _json_id(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _error_message(error: object) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(error, str) and error.strip():
        return error.strip()
    return "unknown error"
