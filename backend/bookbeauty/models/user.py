# backend/bookbeauty/models/user.py
"""
User model.

Users are identified by the uid of their verified identity token, so the
primary key is the provider uid rather than a generated ULID.
"""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func

from ..database import Base


class UserRole(str, Enum):
    CUSTOMER = "customer"
    COMPANY = "company"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    display_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER.value)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_admin(self) -> bool:
        return (self.role or "") == UserRole.ADMIN.value

    def __repr__(self) -> str:
        return f"<User {self.id} role={self.role}>"
