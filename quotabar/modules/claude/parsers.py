from __future__ import annotations

import re
from datetime import datetime

from quotabar.core.exceptions import ParseError
from quotabar.core.pty.driver import strip_ansi
from quotabar.core.types import JsonObject, JsonValue
from quotabar.core.usage.types import ProviderIdentity, RateWindow, UsageSnapshot
from quotabar.core.utils.time import from_epoch_seconds, parse_iso8601, reset_description

SESSION_MINUTES = 300
WEEK_MINUTES = 10080

_MODEL_WEEK_KEYS = ("seven_day_opus", "seven_day_sonnet")
_PLAN_NAMES = {
    "max": "Claude Max",
    "pro": "Claude Pro",
    "team": "Claude Team",
    "enterprise": "Claude Enterprise",
}

_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%\s*(used|left)", re.IGNORECASE)
_RESETS = re.compile(r"\bResets\s+(.+?)\s*$", re.IGNORECASE)
_SECTION_LOOKAHEAD = 4


# --- JSON usage payloads (OAuth and claude.ai) ---


def window_from_usage(raw: JsonValue, *, window_minutes: int) -> RateWindow | None:
    if not isinstance(raw, dict):
        return None
    utilization = raw.get("utilization")
    if isinstance(utilization, bool) or not isinstance(utilization, (int, float)):
        return None
    resets_at = _parse_reset_at(raw.get("resets_at"))
    return RateWindow(
        used_percent=float(utilization),
        window_minutes=window_minutes,
        resets_at=resets_at,
        reset_description=reset_description(resets_at) if resets_at else None,
    )


def snapshot_from_usage(payload: JsonObject, *, identity: ProviderIdentity | None = None) -> UsageSnapshot:
    primary = window_from_usage(payload.get("five_hour"), window_minutes=SESSION_MINUTES)
    secondary = window_from_usage(payload.get("seven_day"), window_minutes=WEEK_MINUTES)
    tertiary = None
    for key in _MODEL_WEEK_KEYS:
        tertiary = window_from_usage(payload.get(key), window_minutes=WEEK_MINUTES)
        if tertiary is not None:
            break
    if primary is None and secondary is None:
        raise ParseError("No Claude usage windows in response")
    return UsageSnapshot(
        primary=primary or secondary,
        secondary=secondary if primary else None,
        tertiary=tertiary,
        identity=identity,
    )


def plan_name(subscription_type: str | None) -> str | None:
    if not subscription_type:
        return None
    normalized = subscription_type.strip().lower()
    return _PLAN_NAMES.get(normalized, subscription_type.strip())


def identity_from_account(account: JsonObject | None) -> ProviderIdentity | None:
    """Email and organization from the claude.ai ``/api/account`` payload."""
    if not account:
        return None
    email = account.get("email_address") or account.get("email")
    organization: str | None = None
    login_method: str | None = None
    memberships = account.get("memberships")
    if isinstance(memberships, list):
        for membership in memberships:
            org = membership.get("organization") if isinstance(membership, dict) else None
            if not isinstance(org, dict):
                continue
            name = org.get("name")
            organization = name if isinstance(name, str) else None
            tier = org.get("rate_limit_tier")
            if isinstance(tier, str):
                login_method = _plan_from_tier(tier)
            break
    if not isinstance(email, str) and organization is None:
        return None
    return ProviderIdentity(
        account_email=email if isinstance(email, str) else None,
        account_organization=organization,
        login_method=login_method,
    )


def _plan_from_tier(tier: str) -> str | None:
    lowered = tier.lower()
    for key, name in _PLAN_NAMES.items():
        if key in lowered:
            return name
    return None


def _parse_reset_at(value: JsonValue) -> datetime | None:
    if isinstance(value, str):
        return parse_iso8601(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch_seconds(value)
    return None


# --- interactive /usage ---


def parse_usage_text(text: str) -> UsageSnapshot:
    """Parses the ``/usage`` panel of the Claude CLI.

    Each section is a heading (``Current session``, ``Current week (all
    models)``, ``Current week (Opus)``) followed by a bar with ``N% used`` and
    an optional ``Resets ...`` line.
    """
    lines = [line.strip(" │|") for line in strip_ansi(text).splitlines()]
    session: RateWindow | None = None
    week: RateWindow | None = None
    model_week: RateWindow | None = None

    for index, line in enumerate(lines):
        lowered = line.lower()
        if lowered.startswith("current session") and session is None:
            session = _section_window(lines, index, SESSION_MINUTES)
        elif lowered.startswith("current week"):
            if "opus" in lowered or "sonnet" in lowered:
                if model_week is None:
                    model_week = _section_window(lines, index, WEEK_MINUTES)
            elif week is None:
                week = _section_window(lines, index, WEEK_MINUTES)

    if session is None and week is None:
        raise ParseError("No usage sections found in Claude /usage output")
    return UsageSnapshot(
        primary=session or week,
        secondary=week if session else None,
        tertiary=model_week,
    )


def _section_window(lines: list[str], start: int, window_minutes: int) -> RateWindow | None:
    used: float | None = None
    reset_text: str | None = None
    for offset, line in enumerate(lines[start : start + _SECTION_LOOKAHEAD + 1]):
        if offset and line.lower().startswith("current "):
            break
        if used is None:
            match = _PERCENT.search(line)
            if match:
                value = float(match.group(1))
                used = value if match.group(2).lower() == "used" else 100.0 - value
        if reset_text is None:
            reset = _RESETS.search(line)
            if reset:
                reset_text = reset.group(1)
    if used is None:
        return None
    return RateWindow(used_percent=used, window_minutes=window_minutes, reset_description=reset_text)
