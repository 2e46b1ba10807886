from __future__ import annotations

import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from enum import StrEnum

from quotabar.core.config.settings import get_settings
from quotabar.core.fetch.context import Interaction, get_interaction

logger = logging.getLogger(__name__)

SECURITY_BINARY = "/usr/bin/security"
_ITEM_NOT_FOUND_EXIT = 44
_QUERY_TIMEOUT_SECONDS = 10.0


class PreflightStatus(StrEnum):
    ALLOWED = "allowed"
    INTERACTION_REQUIRED = "interaction_required"
    NOT_FOUND = "not_found"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class PreflightOutcome:
    status: PreflightStatus
    duration_ms: float = 0.0
    exit_code: int | None = None


@dataclass(frozen=True, slots=True)
class _SecurityResult:
    returncode: int
    stdout: str
    stderr: str
    duration_ms: float


class KeychainPreflight:
    """Non-interactive probes of the macOS login keychain.

    ``check_generic_password`` only reads item attributes, which never shows
    the access dialog; ``read_generic_password`` asks for the secret and may.
    """

    def __init__(self, *, security_binary: str = SECURITY_BINARY, platform: str | None = None) -> None:
        self._security_binary = security_binary
        self._platform = platform or sys.platform

    @property
    def supported(self) -> bool:
        return self._platform == "darwin"

    async def check_generic_password(self, service: str, account: str | None = None) -> PreflightOutcome:
        if not self.supported:
            return PreflightOutcome(PreflightStatus.NOT_FOUND)
        args = ["find-generic-password", "-s", service]
        if account:
            args.extend(["-a", account])
        result = await self._run(args)
        if result is None:
            return PreflightOutcome(PreflightStatus.FAILURE)
        self._log_if_slow(service, result.duration_ms)
        return PreflightOutcome(
            status=_classify(result),
            duration_ms=result.duration_ms,
            exit_code=result.returncode,
        )

    async def read_generic_password(self, service: str, account: str | None = None) -> str | None:
        if not self.supported:
            return None
        args = ["find-generic-password", "-s", service, "-w"]
        if account:
            args.extend(["-a", account])
        result = await self._run(args)
        if result is None or result.returncode != 0:
            return None
        secret = result.stdout.strip()
        return secret or None

    async def _run(self, args: list[str]) -> _SecurityResult | None:
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self._security_binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError:
            logger.warning("Keychain query could not start binary=%s", self._security_binary, exc_info=True)
            return None
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=_QUERY_TIMEOUT_SECONDS)
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Keychain query timed out args=%s", args[:3])
            return None
        return _SecurityResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=(time.monotonic() - started) * 1000,
        )

    def _log_if_slow(self, service: str, duration_ms: float) -> None:
        # Slow no-UI queries are not a reliable signal that a prompt would appear.
        if get_interaction() is not Interaction.BACKGROUND:
            return
        if duration_ms > get_settings().keychain_slow_query_ms:
            logger.debug("Keychain no-UI query was slow service=%s duration_ms=%.2f", service, duration_ms)


def _classify(result: _SecurityResult) -> PreflightStatus:
    if result.returncode == 0:
        return PreflightStatus.ALLOWED
    message = result.stderr.lower()
    if result.returncode == _ITEM_NOT_FOUND_EXIT or "could not be found" in message:
        return PreflightStatus.NOT_FOUND
    if "interaction is not allowed" in message or "user interaction" in message:
        return PreflightStatus.INTERACTION_REQUIRED
    return PreflightStatus.FAILURE
