from __future__ import annotations

from datetime import timedelta

import pytest

from quotabar.core.usage.types import ProviderIdentity, RateWindow, UsageSnapshot
from quotabar.core.utils.time import parse_iso8601, reset_description, utcnow

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("used", "clamped", "remaining"),
    [(42.5, 42.5, 57.5), (115.0, 100.0, 0.0), (-5.0, 0.0, 100.0)],
)
def test_rate_window_clamps_percentages(used, clamped, remaining):
    window = RateWindow(used_percent=used)
    assert window.clamped_used_percent == clamped
    assert window.remaining_percent == remaining


def test_rate_window_keeps_raw_used_percent():
    window = RateWindow(used_percent=115.0)
    assert window.used_percent == 115.0
    assert window.to_dict()["used_percent"] == 100.0


def test_snapshot_identity_accessors():
    snapshot = UsageSnapshot(
        primary=RateWindow(used_percent=10.0),
        identity=ProviderIdentity(account_email="dev@example.com", login_method="pro"),
    )
    assert snapshot.account_email == "dev@example.com"
    assert snapshot.login_method == "pro"
    assert snapshot.account_organization is None
    assert UsageSnapshot(primary=None).account_email is None


def test_snapshot_to_dict_serializes_windows():
    resets = parse_iso8601("2026-01-01T10:00:00Z")
    snapshot = UsageSnapshot(primary=RateWindow(used_percent=5.0, window_minutes=300, resets_at=resets))
    data = snapshot.to_dict()
    assert data["primary"]["resets_at"] == "2026-01-01T10:00:00+00:00"
    assert data["secondary"] is None
    assert data["identity"] is None


def test_reset_description_formats():
    now = utcnow()
    assert reset_description(now + timedelta(days=2, hours=3, minutes=5), now=now) == "in 2d 3h"
    assert reset_description(now + timedelta(hours=1, minutes=30), now=now) == "in 1h 30m"
    assert reset_description(now + timedelta(seconds=20), now=now) == "in 1m"
    assert reset_description(now - timedelta(minutes=1), now=now) == "now"


def test_parse_iso8601_rejects_garbage():
    assert parse_iso8601("not a date") is None
    parsed = parse_iso8601("2026-03-01T08:00:00")
    assert parsed is not None and parsed.tzinfo is not None
