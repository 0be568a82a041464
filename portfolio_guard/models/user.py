"""Back-office user model."""
from sqlalchemy import Boolean, Column, DateTime, String

from portfolio_guard.core.database import Base
from portfolio_guard.utils.datetime import new_id, utcnow


class User(Base):
    """Back-office account. Passwords are stored as bcrypt digests only."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String(150), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")  # admin, manager or user
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_login = Column(DateTime, nullable=True)
