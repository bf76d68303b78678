# backend/bookbeauty/services/permission_service.py
"""
Access checks for salons and bookings.

Identity is verified upstream; these checks answer whether an authenticated
user may act on a given salon or booking.
"""

from typing import Optional, Union

from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenException, NotFoundException
from ..models.booking import Booking
from ..models.company import Company
from ..models.user import User
from ..repositories.company_repository import CompanyRepository
from .base import BaseService


class PermissionService(BaseService):
    def __init__(self, db: Session, company_repository: Optional[CompanyRepository] = None):
        super().__init__(db)
        self.company_repository = company_repository or CompanyRepository(db)

    def get_company(self, company_id: str) -> Company:
        company = self.company_repository.get_by_id(company_id) if company_id else None
        if company is None:
            raise NotFoundException("Company not found", code="CompanyNotFound")
        return company

    def can_manage_company(self, actor: Optional[User], company: Union[Company, str]) -> bool:
        """
        Salon management rights.

        Granted to admins, the account whose uid is the company id, the
        recorded owner, and staff members flagged as owner.
        """
        if actor is None or not actor.id:
            return False
        if actor.is_admin:
            return True

        company_id = company if isinstance(company, str) else company.id
        if actor.id == company_id:
            return True
        if not isinstance(company, str) and company.owner_id == actor.id:
            return True
        if isinstance(company, str):
            record = self.company_repository.get_by_id(company_id)
            if record is not None and record.owner_id == actor.id:
                return True
        return self.company_repository.is_owner_staff(company_id, actor.id)

    def require_company_manager(self, actor: Optional[User], company_id: str) -> Company:
        company = self.get_company(company_id)
        if not self.can_manage_company(actor, company):
            raise ForbiddenException("Not allowed to manage this salon")
        return company

    def can_act_on_booking(self, actor: Optional[User], booking: Booking) -> bool:
        """Admin, the booking's customer, or a manager of the booking's salon."""
        if actor is None or not actor.id:
            return False
        if actor.is_admin or actor.id == booking.customer_id:
            return True
        return self.can_manage_company(actor, booking.company_id)
