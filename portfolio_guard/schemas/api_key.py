"""Schemas for API key management."""
from datetime import datetime
from typing import List, Optional

from portfolio_guard.schemas.common import CamelModel


class ApiKeyResponse(CamelModel):
    """Response schema for an API key (safe fields only)."""
    id: str
    name: str
    service: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    created_by: str
    last_used: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    key_masked: Optional[str] = None  # First 8 chars of the digest + "..."

    @classmethod
    def from_model(cls, api_key) -> "ApiKeyResponse":
        key_hash = api_key.key_hash or ""
        return cls(
            id=api_key.id,
            name=api_key.name,
            service=api_key.service,
            is_active=api_key.is_active,
            created_at=api_key.created_at,
            updated_at=api_key.updated_at,
            created_by=api_key.created_by,
            last_used=api_key.last_used,
            expires_at=api_key.expires_at,
            key_masked=f"{key_hash[:8]}..." if len(key_hash) > 8 else "***",
        )


class ApiKeyEnvelope(CamelModel):
    success: bool = True
    api_key: ApiKeyResponse


class ApiKeyCreateResponse(CamelModel):
    """Response schema for create and rotate (includes the raw key once)."""
    success: bool = True
    api_key: ApiKeyResponse
    raw_key: str
    message: Optional[str] = None


class ApiKeyListResponse(CamelModel):
    success: bool = True
    api_keys: List[ApiKeyResponse]
    total: int


class ApiKeyRevealResponse(CamelModel):
    success: bool = True
    raw_key: str


class ApiKeyLogResponse(CamelModel):
    """Response schema for an API key audit entry."""
    id: str
    action: str
    api_key_id: str
    api_key_name: str
    service: str
    performed_by: str
    timestamp: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[str] = None


class ApiKeyLogListResponse(CamelModel):
    success: bool = True
    logs: List[ApiKeyLogResponse]
    total: int
