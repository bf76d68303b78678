"""Data access for connected Mollie accounts and OAuth states."""

from __future__ import annotations

from typing import Optional, cast

from sqlalchemy.orm import Session

from ..models.mollie_account import CompanyMollieAccount
from ..models.oauth_state import OAuthState
from .base_repository import BaseRepository


class MollieAccountRepository(BaseRepository[CompanyMollieAccount]):
    def __init__(self, db: Session):
        super().__init__(db, CompanyMollieAccount)

    def get_by_company(
        self, company_id: str, for_update: bool = False
    ) -> Optional[CompanyMollieAccount]:
        query = self.db.query(CompanyMollieAccount).filter(
            CompanyMollieAccount.company_id == company_id
        )
        if for_update:
            query = query.with_for_update()
        return cast(Optional[CompanyMollieAccount], query.first())

    def get_or_create(self, company_id: str, for_update: bool = False) -> CompanyMollieAccount:
        account = self.get_by_company(company_id, for_update=for_update)
        if account is None:
            account = self.create(company_id=company_id, linked=False, status="unlinked")
        return account


class OAuthStateRepository(BaseRepository[OAuthState]):
    def __init__(self, db: Session):
        super().__init__(db, OAuthState)

    def get_for_update(self, state_id: str) -> Optional[OAuthState]:
        return self.get_by_id(state_id, for_update=True)
