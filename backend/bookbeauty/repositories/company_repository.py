"""Data access for salons, their staff and services."""

from __future__ import annotations

from typing import Optional, cast

from sqlalchemy.orm import Session

from ..models.company import Company, CompanyStaff
from ..models.service import Service
from ..models.user import User
from .base_repository import BaseRepository


class CompanyRepository(BaseRepository[Company]):
    def __init__(self, db: Session):
        super().__init__(db, Company)

    def is_owner_staff(self, company_id: str, user_id: str) -> bool:
        row = (
            self.db.query(CompanyStaff.id)
            .filter(
                CompanyStaff.company_id == company_id,
                CompanyStaff.user_id == user_id,
                CompanyStaff.is_owner.is_(True),
            )
            .first()
        )
        return row is not None

    def get_service(self, service_id: str) -> Optional[Service]:
        result = self.db.query(Service).filter(Service.id == service_id).first()
        return cast(Optional[Service], result)

    def get_user(self, user_id: str) -> Optional[User]:
        result = self.db.query(User).filter(User.id == user_id).first()
        return cast(Optional[User], result)
