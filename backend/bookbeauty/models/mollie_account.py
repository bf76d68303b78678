"""Connected Mollie account (OAuth linkage) per salon."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class CompanyMollieAccount(Base):
    """
    OAuth tokens and onboarding state for a salon's Mollie organization.

    Tokens are only ever written through ``TokenCodec``; the plaintext
    ``legacy_*`` columns exist so old rows stay readable and are cleared on
    every token write.
    """

    __tablename__ = "company_mollie_accounts"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(
        String(128),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    access_token_storage = Column(String(16), nullable=True)
    refresh_token_storage = Column(String(16), nullable=True)
    legacy_access_token = Column(Text, nullable=True)
    legacy_refresh_token = Column(Text, nullable=True)
    token_type = Column(String(20), nullable=True)
    scope = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    linked = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="unlinked")
    linked_at = Column(DateTime(timezone=True), nullable=True)
    last_refresh_at = Column(DateTime(timezone=True), nullable=True)
    disconnected_at = Column(DateTime(timezone=True), nullable=True)
    disconnected_by_id = Column(String(128), nullable=True)

    organization_id = Column(String(64), nullable=True)
    organization_name = Column(String(255), nullable=True)
    profile_id = Column(String(64), nullable=True)
    onboarding_status = Column(String(30), nullable=True)
    can_receive_payments = Column(Boolean, nullable=True)
    can_receive_settlements = Column(Boolean, nullable=True)
    dashboard_onboarding_url = Column(Text, nullable=True)
    client_link_url = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    company = relationship("Company", back_populates="mollie_account")

    def __repr__(self) -> str:
        return f"<CompanyMollieAccount company={self.company_id} status={self.status}>"
