from __future__ import annotations

import re
from dataclasses import dataclass

from quotabar.core.exceptions import ParseError
from quotabar.core.pty.driver import strip_ansi
from quotabar.core.usage.models import (
    CreditsPayload,
    RPCAccountResponse,
    RPCCreditsSnapshot,
    RPCRateLimitSnapshot,
    RPCRateLimitWindow,
    UsagePayload,
    UsageWindow,
)
from quotabar.core.usage.types import CreditsSnapshot, ProviderIdentity, RateWindow, UsageSnapshot
from quotabar.core.utils.time import from_epoch_seconds, reset_description
from quotabar.modules.codex.auth import CodexAccountInfo

FIVE_HOUR_MINUTES = 300
WEEKLY_MINUTES = 10080

_FIVE_HOUR_LABEL = re.compile(r"\b(?:5h|5-hour)\s+limit\b", re.IGNORECASE)
_WEEKLY_LABEL = re.compile(r"\bweekly\s+limit\b", re.IGNORECASE)
_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%\s*(left|used)", re.IGNORECASE)
_RESETS = re.compile(r"\(?\s*resets\s+([^)│|]+?)\s*(?:\)|│|\||$)", re.IGNORECASE)
_CREDITS = re.compile(r"Credits:\s*\$?\s*([\d,]+(?:\.\d+)?)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class StatusLimit:
    used_percent: float
    reset_text: str | None = None


@dataclass(frozen=True, slots=True)
class CodexStatus:
    five_hour: StatusLimit | None = None
    weekly: StatusLimit | None = None
    credits: float | None = None


# --- app-server RPC ---


def window_from_rpc(window: RPCRateLimitWindow | None) -> RateWindow | None:
    if window is None:
        return None
    resets_at = from_epoch_seconds(window.resets_at)
    return RateWindow(
        used_percent=window.used_percent,
        window_minutes=window.window_duration_mins,
        resets_at=resets_at,
        reset_description=reset_description(resets_at) if resets_at else None,
    )


def snapshot_from_rpc(
    limits: RPCRateLimitSnapshot,
    account: RPCAccountResponse | None = None,
) -> UsageSnapshot:
    primary = window_from_rpc(limits.primary)
    secondary = window_from_rpc(limits.secondary)
    if primary is None and secondary is None:
        raise ParseError("No rate limits found in app-server response")

    identity = None
    details = account.account if account is not None else None
    if details is not None and details.is_chatgpt:
        identity = ProviderIdentity(account_email=details.email, login_method=details.plan_type)
    return UsageSnapshot(primary=primary or secondary, secondary=secondary if primary else None, identity=identity)


def credits_from_rpc(credits: RPCCreditsSnapshot | None) -> CreditsSnapshot | None:
    if credits is None:
        return None
    return CreditsSnapshot(remaining=parse_balance(credits.balance))


def parse_balance(balance: str | None) -> float:
    if balance is None:
        return 0.0
    try:
        return float(balance.replace(",", "").strip())
    except ValueError:
        return 0.0


# --- interactive /status ---


def parse_status_text(text: str) -> CodexStatus:
    """Extracts limits and credits from the rendered ``/status`` panel."""
    clean = strip_ansi(text)
    five_hour: StatusLimit | None = None
    weekly: StatusLimit | None = None
    credits: float | None = None

    for line in clean.splitlines():
        if credits is None:
            match = _CREDITS.search(line)
            if match:
                credits = parse_balance(match.group(1))
        if five_hour is None and _FIVE_HOUR_LABEL.search(line):
            five_hour = _parse_limit_line(line)
        elif weekly is None and _WEEKLY_LABEL.search(line):
            weekly = _parse_limit_line(line)

    return CodexStatus(five_hour=five_hour, weekly=weekly, credits=credits)


def snapshot_from_status(status: CodexStatus, account: CodexAccountInfo | None = None) -> UsageSnapshot:
    if status.five_hour is None and status.weekly is None:
        raise ParseError("No rate limits found in /status output")
    windows = [
        _status_window(limit, minutes)
        for limit, minutes in ((status.five_hour, FIVE_HOUR_MINUTES), (status.weekly, WEEKLY_MINUTES))
        if limit is not None
    ]
    return UsageSnapshot(
        primary=windows[0],
        secondary=windows[1] if len(windows) > 1 else None,
        identity=_identity_from_account(account),
    )


def _parse_limit_line(line: str) -> StatusLimit | None:
    match = _PERCENT.search(line)
    if match is None:
        return None
    value = float(match.group(1))
    used = value if match.group(2).lower() == "used" else 100.0 - value
    reset = _RESETS.search(line[match.end() :])
    return StatusLimit(used_percent=used, reset_text=reset.group(1).strip() if reset else None)


def _status_window(limit: StatusLimit, window_minutes: int) -> RateWindow:
    return RateWindow(
        used_percent=max(0.0, limit.used_percent),
        window_minutes=window_minutes,
        reset_description=limit.reset_text,
    )


# --- ChatGPT usage endpoint ---


def window_from_usage(window: UsageWindow | None) -> RateWindow | None:
    if window is None or window.used_percent is None:
        return None
    resets_at = from_epoch_seconds(window.reset_at)
    window_minutes = window.limit_window_seconds // 60 if window.limit_window_seconds else None
    return RateWindow(
        used_percent=window.used_percent,
        window_minutes=window_minutes,
        resets_at=resets_at,
        reset_description=reset_description(resets_at) if resets_at else None,
    )


def snapshot_from_usage(payload: UsagePayload, account: CodexAccountInfo | None = None) -> UsageSnapshot:
    rate_limit = payload.rate_limit
    primary = window_from_usage(rate_limit.primary_window) if rate_limit else None
    secondary = window_from_usage(rate_limit.secondary_window) if rate_limit else None
    if primary is None and secondary is None:
        raise ParseError("No rate limits found in usage response")

    email = payload.email or (account.email if account else None)
    plan = payload.plan_type or (account.plan if account else None)
    identity = ProviderIdentity(account_email=email, login_method=plan) if email or plan else None
    return UsageSnapshot(primary=primary or secondary, secondary=secondary if primary else None, identity=identity)


def credits_from_usage(credits: CreditsPayload | None) -> CreditsSnapshot | None:
    if credits is None or credits.balance is None:
        return None
    return CreditsSnapshot(remaining=parse_balance(credits.balance))


def _identity_from_account(account: CodexAccountInfo | None) -> ProviderIdentity | None:
    if account is None or (account.email is None and account.plan is None):
        return None
    return ProviderIdentity(account_email=account.email, login_method=account.plan)
