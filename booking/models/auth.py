from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..db import Base

class AuthRecord(Base):
    """Единственный действующий refresh-токен пользователя (1:1 с users)."""
    __tablename__ = "auth_records"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    refresh_token = Column(String(1024), nullable=True)   # None после logout
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")


class UserSession(Base):
    """Выданный access-токен; просроченные записи считаются отсутствующими."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True)
    token = Column(String(1024), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")
