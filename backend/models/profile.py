"""
Marketplace account models mirrored from the identity platform.
Profiles, role assignments and the admin activity log.
"""
import uuid
from enum import Enum
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON
from sqlalchemy.sql import func
from services.db import Base

class AppRole(str, Enum):
    CLIENT = "client"
    VENDOR = "vendor"
    ADMIN = "admin"

class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=True, index=True)
    username = Column(String(50), unique=True, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    # Login tracking
    last_login = Column(DateTime(timezone=True), nullable=True)
    login_count = Column(Integer, default=0, nullable=False)
    ip_last_login = Column(String(45), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Profile(username='{self.username}', active={self.active})>"

class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(String(10), nullable=False, default=AppRole.CLIENT.value)

class ActivityLog(Base):
    """Dashboard activity log entry (logins, bans, admin actions)."""
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=True, index=True)
    action_type = Column(String(50), nullable=False)
    message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
