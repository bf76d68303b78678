# backend/bookbeauty/routes/v1/mollie_connect.py
"""
Mollie Connect routes - API v1

Mounted under /api/v1/mollie.

Endpoints:
    GET|POST /oauth/start       → Authorization URL for a salon
    GET /oauth/callback         → Provider redirect; 302 back to the app
    GET|POST /disconnect        → Forget the salon's tokens
    POST /onboarding-link       → Onboarding (or client-link invite) URL
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from ...api.dependencies import get_current_active_user, get_mollie_connect_service
from ...core.exceptions import DomainException
from ...models.user import User
from ...schemas.mollie import (
    CompanyRequest,
    DisconnectResponse,
    OAuthStartResponse,
    OnboardingLinkRequest,
    OnboardingLinkResponse,
)
from ...services.mollie_connect_service import MollieConnectService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mollie-connect-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


async def _start(
    service: MollieConnectService, user: User, company_id: str
) -> OAuthStartResponse:
    try:
        result = await asyncio.to_thread(service.start_oauth, user, company_id)
        return OAuthStartResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/oauth/start", response_model=OAuthStartResponse)
async def oauth_start_get(
    company_id: str = Query(..., alias="companyId", min_length=1, max_length=128),
    current_user: User = Depends(get_current_active_user),
    service: MollieConnectService = Depends(get_mollie_connect_service),
) -> OAuthStartResponse:
    return await _start(service, current_user, company_id)


@router.post("/oauth/start", response_model=OAuthStartResponse)
async def oauth_start_post(
    payload: CompanyRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    service: MollieConnectService = Depends(get_mollie_connect_service),
) -> OAuthStartResponse:
    return await _start(service, current_user, payload.company_id)


@router.get("/oauth/callback", include_in_schema=False)
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    service: MollieConnectService = Depends(get_mollie_connect_service),
) -> RedirectResponse:
    """Provider redirect target; failures are reported through the redirect query."""
    target = await asyncio.to_thread(
        service.complete_oauth, code, state, error, error_description
    )
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)


async def _disconnect(
    service: MollieConnectService, user: User, company_id: str
) -> DisconnectResponse:
    try:
        result = await asyncio.to_thread(service.disconnect, user, company_id)
        return DisconnectResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/disconnect", response_model=DisconnectResponse)
async def disconnect_get(
    company_id: str = Query(..., alias="companyId", min_length=1, max_length=128),
    current_user: User = Depends(get_current_active_user),
    service: MollieConnectService = Depends(get_mollie_connect_service),
) -> DisconnectResponse:
    return await _disconnect(service, current_user, company_id)


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect_post(
    payload: CompanyRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    service: MollieConnectService = Depends(get_mollie_connect_service),
) -> DisconnectResponse:
    return await _disconnect(service, current_user, payload.company_id)


@router.post("/onboarding-link", response_model=OnboardingLinkResponse)
async def onboarding_link(
    payload: OnboardingLinkRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    service: MollieConnectService = Depends(get_mollie_connect_service),
) -> OnboardingLinkResponse:
    try:
        result = await asyncio.to_thread(
            service.onboarding_link,
            current_user,
            payload.company_id,
            create_client_link=payload.create_client_link,
            owner_email=payload.owner_email,
            owner_given_name=payload.owner_given_name,
            owner_family_name=payload.owner_family_name,
            business_name=payload.business_name,
            country=payload.country,
        )
        return OnboardingLinkResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)
