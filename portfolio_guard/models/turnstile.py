"""
Turnstile site keys, their audit trail, and daily verification analytics.
"""
from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Text

from portfolio_guard.core.database import Base
from portfolio_guard.utils.datetime import new_id, utcnow


class TurnstileSiteKey(Base):
    """Turnstile widget key pair. The secret is stored encrypted."""
    __tablename__ = "turnstile_site_keys"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    environment = Column(String(20), nullable=False, index=True)  # development, staging, production
    site_key = Column(String(255), nullable=False)
    secret_key = Column(Text, nullable=False)  # encrypted
    domain = Column(String(255), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    created_by = Column(String(150), nullable=False)
    last_used = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class TurnstileLog(Base):
    """One row per mutating or sensitive-read operation on a site key."""
    __tablename__ = "turnstile_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    site_key_id = Column(String(36), nullable=False, index=True)  # "all" for bulk views
    action = Column(String(20), nullable=False, index=True)
    success = Column(Boolean, default=True, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    performed_by = Column(String(150), nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(255), nullable=True)
    details = Column(Text, nullable=True)


class TurnstileAnalytics(Base):
    """
    Aggregated verification counts, one row per UTC calendar day.

    total_verifications == successful_verifications + failed_verifications
    """
    __tablename__ = "turnstile_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(Date, unique=True, nullable=False, index=True)
    total_verifications = Column(Integer, default=0, nullable=False)
    successful_verifications = Column(Integer, default=0, nullable=False)
    failed_verifications = Column(Integer, default=0, nullable=False)
