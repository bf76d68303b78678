"""Mollie Connect DTOs."""

from typing import Literal, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class CompanyRequest(StrictRequestModel):
    company_id: str = Field(..., min_length=1, max_length=128)


class OAuthStartResponse(StrictModel):
    url: str
    auth_url: str
    state_expires_at_ms: int


class DisconnectResponse(StrictModel):
    company_id: str
    status: str


class OnboardingLinkRequest(StrictRequestModel):
    company_id: str = Field(..., min_length=1, max_length=128)
    create_client_link: bool = False
    owner_email: Optional[str] = Field(None, max_length=255)
    owner_given_name: Optional[str] = Field(None, max_length=120)
    owner_family_name: Optional[str] = Field(None, max_length=120)
    business_name: Optional[str] = Field(None, max_length=255)
    country: str = Field("NL", min_length=2, max_length=2)


class OnboardingLinkResponse(StrictModel):
    mode: Literal["oauth_onboarding", "client_link"]
    onboarding_url: str
    onboarding_status: Optional[str] = None
    can_receive_payments: Optional[bool] = None
    can_receive_settlements: Optional[bool] = None
