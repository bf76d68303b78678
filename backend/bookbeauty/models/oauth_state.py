"""Single-use OAuth state records."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func

from ..database import Base


class OAuthState(Base):
    """Correlates an authorization redirect with the salon and actor that started it."""

    __tablename__ = "oauth_states"

    id = Column(String(64), primary_key=True)
    provider = Column(String(20), nullable=False)
    company_id = Column(String(128), nullable=False, index=True)
    actor_id = Column(String(128), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
