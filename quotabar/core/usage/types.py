from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from quotabar.core.types import JsonObject
from quotabar.core.utils.time import utcnow


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


@dataclass(frozen=True, slots=True)
class RateWindow:
    used_percent: float
    window_minutes: int | None = None
    resets_at: datetime | None = None
    reset_description: str | None = None

    @property
    def clamped_used_percent(self) -> float:
        return clamp_percent(self.used_percent)

    @property
    def remaining_percent(self) -> float:
        return 100.0 - self.clamped_used_percent

    def to_dict(self) -> JsonObject:
        return {
            "used_percent": self.clamped_used_percent,
            "remaining_percent": self.remaining_percent,
            "window_minutes": self.window_minutes,
            "resets_at": self.resets_at.isoformat() if self.resets_at else None,
            "reset_description": self.reset_description,
        }


@dataclass(frozen=True, slots=True)
class ProviderIdentity:
    account_email: str | None = None
    account_organization: str | None = None
    login_method: str | None = None

    def to_dict(self) -> JsonObject:
        return {
            "account_email": self.account_email,
            "account_organization": self.account_organization,
            "login_method": self.login_method,
        }


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    primary: RateWindow | None
    secondary: RateWindow | None = None
    tertiary: RateWindow | None = None
    updated_at: datetime = field(default_factory=utcnow)
    identity: ProviderIdentity | None = None

    @property
    def account_email(self) -> str | None:
        return self.identity.account_email if self.identity else None

    @property
    def account_organization(self) -> str | None:
        return self.identity.account_organization if self.identity else None

    @property
    def login_method(self) -> str | None:
        return self.identity.login_method if self.identity else None

    def to_dict(self) -> JsonObject:
        return {
            "primary": self.primary.to_dict() if self.primary else None,
            "secondary": self.secondary.to_dict() if self.secondary else None,
            "tertiary": self.tertiary.to_dict() if self.tertiary else None,
            "updated_at": self.updated_at.isoformat(),
            "identity": self.identity.to_dict() if self.identity else None,
        }


@dataclass(frozen=True, slots=True)
class CreditsSnapshot:
    remaining: float
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> JsonObject:
        return {"remaining": self.remaining, "updated_at": self.updated_at.isoformat()}
