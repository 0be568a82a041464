"""
Append-only audit trail for API key operations.
"""
from sqlalchemy import Column, DateTime, String, Text

from portfolio_guard.core.database import Base
from portfolio_guard.utils.datetime import new_id, utcnow


class ApiKeyLog(Base):
    """One row per mutating or sensitive-read operation on an API key."""
    __tablename__ = "api_key_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(20), nullable=False, index=True)  # created, updated, deleted, viewed, used
    api_key_id = Column(String(36), nullable=False, index=True)  # "all" for bulk views
    api_key_name = Column(String(255), nullable=False)
    service = Column(String(255), nullable=False, index=True)
    performed_by = Column(String(150), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Request metadata
    ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6
    user_agent = Column(String(255), nullable=True)

    details = Column(Text, nullable=True)
