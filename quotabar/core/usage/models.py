from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RPCRateLimitWindow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    used_percent: float = Field(alias="usedPercent")
    window_duration_mins: int | None = Field(default=None, alias="windowDurationMins")
    resets_at: int | None = Field(default=None, alias="resetsAt")


class RPCCreditsSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    has_credits: bool = Field(default=False, alias="hasCredits")
    unlimited: bool = False
    balance: str | None = None


class RPCRateLimitSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    primary: RPCRateLimitWindow | None = None
    secondary: RPCRateLimitWindow | None = None
    credits: RPCCreditsSnapshot | None = None


class RPCRateLimitsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    rate_limits: RPCRateLimitSnapshot = Field(alias="rateLimits")


class RPCAccountDetails(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    email: str | None = None
    plan_type: str | None = Field(default=None, alias="planType")

    @property
    def is_chatgpt(self) -> bool:
        return self.type.lower() == "chatgpt"


class RPCAccountResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    account: RPCAccountDetails | None = None
    requires_openai_auth: bool | None = Field(default=None, alias="requiresOpenaiAuth")


class UsageWindow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    used_percent: float | None = None
    reset_at: int | None = None
    limit_window_seconds: int | None = None
    reset_after_seconds: int | None = None


class RateLimitPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    primary_window: UsageWindow | None = None
    secondary_window: UsageWindow | None = None


class CreditsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    has_credits: bool | None = None
    unlimited: bool | None = None
    balance: str | None = None


class UsagePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    plan_type: str | None = None
    email: str | None = None
    rate_limit: RateLimitPayload | None = None
    credits: CreditsPayload | None = None
