from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from services.db import Base

class BannedEmail(Base):
    __tablename__ = "banned_emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), unique=True, nullable=False)
    banned_by = Column(String(36), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class BannedIP(Base):
    __tablename__ = "banned_ips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_address = Column(String(45), unique=True, nullable=False)
    banned_by = Column(String(36), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
