"""Schemas for Turnstile site keys, logs, analytics and verification."""
from datetime import date, datetime
from typing import List, Optional

from pydantic import Field, computed_field

from portfolio_guard.schemas.common import CamelModel


class SiteKeyResponse(CamelModel):
    """Response schema for a site key. The secret is never included."""
    id: str
    name: str
    environment: str
    site_key: str
    domain: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    created_by: str
    last_used: Optional[datetime] = None


class SiteKeyEnvelope(CamelModel):
    success: bool = True
    site_key: SiteKeyResponse


class SiteKeyListResponse(CamelModel):
    success: bool = True
    site_keys: List[SiteKeyResponse]
    total: int


class SiteKeySecretResponse(CamelModel):
    success: bool = True
    secret_key: str


class TurnstileLogResponse(CamelModel):
    id: str
    site_key_id: str
    action: str
    success: bool
    timestamp: datetime
    performed_by: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[str] = None


class TurnstileLogListResponse(CamelModel):
    success: bool = True
    logs: List[TurnstileLogResponse]
    total: int


class AnalyticsDayResponse(CamelModel):
    """One day of verification counts."""
    day: date = Field(alias="date")
    total_verifications: int
    successful_verifications: int
    failed_verifications: int

    @computed_field
    @property
    def success_rate(self) -> float:
        if not self.total_verifications:
            return 0.0
        return round(self.successful_verifications / self.total_verifications * 100, 2)


class AnalyticsResponse(CamelModel):
    success: bool = True
    analytics: List[AnalyticsDayResponse]
    total_verifications: int
    successful_verifications: int
    failed_verifications: int


class TurnstileConfigResponse(CamelModel):
    """Cookie configuration as shown to the admin: only whether a secret exists."""
    success: bool = True
    site_key: str
    secret_key: bool
    updated_at: Optional[str] = None


class EnvStatusResponse(CamelModel):
    has_site_key: bool
    has_secret_key: bool


class PublicSiteKeyResponse(CamelModel):
    site_key: str


class VerifyTokenRequest(CamelModel):
    """Request schema for verifying a widget token."""
    token: str = ""
    idempotency_key: Optional[str] = None


class VerifyTokenResponse(CamelModel):
    success: bool
    challenge_ts: Optional[str] = Field(default=None, alias="challenge_ts")
    hostname: Optional[str] = None
    message: Optional[str] = None
