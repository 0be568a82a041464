"""API key database model."""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from portfolio_guard.core.database import Base
from portfolio_guard.utils.datetime import new_id, utcnow


class ApiKey(Base):
    """
    Managed third-party API key.

    The raw key is kept twice: encrypted (for administrative recovery only)
    and as a SHA-256 digest (for verification). Rows are never deleted;
    revocation sets is_active=False.
    """
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    encrypted_key = Column(Text, nullable=False)
    key_hash = Column(String(64), unique=True, nullable=False, index=True)
    service = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    created_by = Column(String(150), nullable=False)
    last_used = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Optimistic concurrency: a stale UPDATE raises StaleDataError
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
