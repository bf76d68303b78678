# backend/bookbeauty/services/mollie_connect_service.py
"""
Mollie Connect service for BookBeauty.

Owns the OAuth lifecycle of a salon's connected Mollie organization:
- authorization start and callback with single-use OAuth states
- token storage through ``TokenCodec`` (never plaintext at rest)
- transparent refresh of expiring access tokens, and one refresh-and-retry
  when the provider rejects a token
- disconnect and onboarding links
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.constants import MOLLIE_PROVIDER
from ..core.crypto import TokenCodec
from ..core.exceptions import (
    ConflictException,
    MerchantNotLinkedException,
    ServiceException,
    UpstreamFailureException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, to_epoch_ms, utc_now
from ..integrations.mollie_client import (
    MollieClient,
    MollieClientFactory,
    MollieError,
    is_auth_error,
)
from ..models.mollie_account import CompanyMollieAccount
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.mollie_account_repository import (
    MollieAccountRepository,
    OAuthStateRepository,
)
from .base import BaseService
from .permission_service import PermissionService

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLIENT_LINK_PROVIDER = "mollie-client-link"
SETTINGS_PAYMENTS_PATH = "/settings/payments"


@dataclass(frozen=True)
class ConnectedClient:
    """A ready provider client for a salon plus the token metadata it was built from."""

    company_id: str
    client: MollieClient
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime]
    organization_id: Optional[str] = None
    profile_id: Optional[str] = None


def _links_href(payload: Mapping[str, Any] | None, name: str) -> str:
    links = (payload or {}).get("_links") or {}
    node = links.get(name) or {}
    return str(node.get("href") or "").strip()


def _with_query(url: str, params: Mapping[str, Any]) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update({key: str(value) for key, value in params.items()})
    return urlunsplit(parts._replace(query=urlencode(query)))


class MollieConnectService(BaseService):
    """Connected-account token manager for salons."""

    def __init__(
        self,
        db: Session,
        config: Optional[Settings] = None,
        client_factory: Optional[MollieClientFactory] = None,
        token_codec: Optional[TokenCodec] = None,
        account_repository: Optional[MollieAccountRepository] = None,
        state_repository: Optional[OAuthStateRepository] = None,
        permission_service: Optional[PermissionService] = None,
        now_provider: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.config = config or default_settings
        self.client_factory = client_factory or MollieClientFactory(self.config)
        self.token_codec = token_codec or TokenCodec.from_settings(self.config)
        self.account_repository = account_repository or MollieAccountRepository(db)
        self.state_repository = state_repository or OAuthStateRepository(db)
        self.permission_service = permission_service or PermissionService(db)
        self._now = now_provider

    # Permissions

    def can_manage_company(self, actor: Optional[User], company_id: str) -> bool:
        return self.permission_service.can_manage_company(actor, company_id)

    # Tokens

    def read_tokens(self, account: CompanyMollieAccount) -> tuple[str, str]:
        """Decoded (access, refresh) tokens; undecodable values read as empty."""
        access = self.token_codec.decode(
            account.access_token_encrypted or account.legacy_access_token
        )
        refresh = self.token_codec.decode(
            account.refresh_token_encrypted or account.legacy_refresh_token
        )
        return access, refresh

    def save_tokens(
        self,
        company_id: str,
        token_payload: Mapping[str, Any],
        account: Optional[CompanyMollieAccount] = None,
    ) -> CompanyMollieAccount:
        """
        Store a token response on the salon's account row.

        Runs inside the caller's transaction. Legacy plaintext columns are
        cleared on every write.
        """
        record = account or self.account_repository.get_or_create(company_id, for_update=True)
        access_value, access_mode = self.token_codec.encode(
            str(token_payload.get("access_token") or "").strip()
        )
        refresh_plain = str(token_payload.get("refresh_token") or "").strip()
        if refresh_plain:
            refresh_value, refresh_mode = self.token_codec.encode(refresh_plain)
        else:
            # Refresh responses may omit the refresh token; keep the stored one.
            refresh_value = record.refresh_token_encrypted or ""
            refresh_mode = record.refresh_token_storage or "empty"
            if not refresh_value and record.legacy_refresh_token:
                refresh_value, refresh_mode = self.token_codec.encode(
                    self.token_codec.decode(record.legacy_refresh_token)
                )

        try:
            expires_in = int(token_payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0

        now = self._now()
        record.access_token_encrypted = access_value or None
        record.refresh_token_encrypted = refresh_value or None
        record.access_token_storage = access_mode
        record.refresh_token_storage = refresh_mode
        record.legacy_access_token = None
        record.legacy_refresh_token = None
        record.token_type = str(token_payload.get("token_type") or "bearer").strip()
        record.scope = str(token_payload.get("scope") or "").strip() or record.scope
        record.expires_at = now + timedelta(seconds=expires_in) if expires_in > 0 else None
        record.linked = True
        record.status = "linked"
        record.last_refresh_at = now
        self.account_repository.flush()
        return record

    @BaseService.measure_operation("get_valid_client")
    def get_valid_client(self, company_id: str) -> ConnectedClient:
        """
        Client for the salon's connected account, refreshing the token first
        when it expires within the configured skew window.
        """
        account = self.account_repository.get_by_company(company_id)
        if account is None or not (account.linked or account.status == "linked"):
            raise MerchantNotLinkedException(company_id)

        access_token, refresh_token = self.read_tokens(account)
        if not access_token:
            raise MerchantNotLinkedException(company_id, "Mollie access token missing")

        expires_at = ensure_utc(account.expires_at)
        skew = timedelta(seconds=self.config.token_refresh_skew_seconds)
        if refresh_token and expires_at is not None and expires_at <= self._now() + skew:
            return self._refresh(company_id, refresh_token)

        return ConnectedClient(
            company_id=company_id,
            client=self.client_factory.for_access_token(access_token),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            organization_id=account.organization_id,
            profile_id=account.profile_id,
        )

    def with_auto_refresh(
        self,
        company_id: str,
        runner: Callable[[MollieClient], T],
        connected: Optional[ConnectedClient] = None,
    ) -> T:
        """
        Run a provider call with the salon's token.

        On an authentication failure with a refresh token available, refreshes
        once and retries once; any other failure propagates unchanged.
        """
        current = connected or self.get_valid_client(company_id)
        try:
            return runner(current.client)
        except MollieError as exc:
            if not is_auth_error(exc) or not current.refresh_token:
                raise
            self.logger.info(
                "Mollie rejected access token; refreshing once",
                extra={"company_id": company_id, "status_code": exc.status_code},
            )
            refreshed = self._refresh(company_id, current.refresh_token)
            return runner(refreshed.client)

    def _refresh(self, company_id: str, refresh_token: str) -> ConnectedClient:
        try:
            payload = self.client_factory.oauth().refresh(refresh_token)
        except (MollieError, ValueError) as exc:
            prometheus_metrics.record_token_refresh("failure")
            self.logger.warning(
                "Mollie token refresh failed",
                extra={"company_id": company_id, "error": str(exc)},
            )
            raise MerchantNotLinkedException(
                company_id, "Mollie token refresh failed; reconnect the account"
            ) from exc

        access_token = str(payload.get("access_token") or "").strip()
        if not access_token:
            prometheus_metrics.record_token_refresh("failure")
            raise MerchantNotLinkedException(
                company_id, "Token refresh returned no access token"
            )

        with self.transaction():
            account = self.save_tokens(company_id, payload)
            organization_id = account.organization_id
            profile_id = account.profile_id
            expires_at = account.expires_at

        prometheus_metrics.record_token_refresh("success")
        return ConnectedClient(
            company_id=company_id,
            client=self.client_factory.for_access_token(access_token),
            access_token=access_token,
            refresh_token=str(payload.get("refresh_token") or "").strip() or refresh_token,
            expires_at=expires_at,
            organization_id=organization_id,
            profile_id=profile_id,
        )

    # OAuth

    def _require_oauth_configured(self) -> None:
        if not self.config.oauth_configured or not self.config.app_base_url:
            raise ServiceException("Mollie OAuth is not configured", code="NotConfigured")

    def _create_state(self, company_id: str, actor_id: str, provider: str) -> tuple[str, datetime]:
        state = secrets.token_urlsafe(24)
        expires_at = self._now() + timedelta(minutes=self.config.oauth_state_ttl_minutes)
        self.state_repository.create(
            id=state,
            provider=provider,
            company_id=company_id,
            actor_id=actor_id,
            expires_at=expires_at,
            consumed=False,
        )
        return state, expires_at

    @BaseService.measure_operation("start_oauth")
    def start_oauth(self, actor: User, company_id: str) -> Dict[str, Any]:
        self._require_oauth_configured()
        if not company_id:
            raise ValidationException("companyId is required")
        self.permission_service.require_company_manager(actor, company_id)

        with self.transaction():
            state, expires_at = self._create_state(company_id, actor.id, MOLLIE_PROVIDER)

        auth_url = self.client_factory.oauth().build_authorize_url(
            state=state, scopes=self.config.mollie_oauth_scopes
        )
        self.logger.info(
            "OAuth state created",
            extra={"company_id": company_id, "actor_id": actor.id},
        )
        return {
            "url": auth_url,
            "auth_url": auth_url,
            "state_expires_at_ms": to_epoch_ms(expires_at),
        }

    def _consume_state(self, state: str) -> str:
        """Mark the state consumed and return its company id."""
        with self.transaction():
            row = self.state_repository.get_for_update(state)
            if row is None:
                raise ConflictException("Unknown OAuth state", code="INVALID_STATE")
            expires_at = ensure_utc(row.expires_at)
            if row.consumed or not row.company_id or expires_at is None or expires_at < self._now():
                raise ConflictException("OAuth state expired or already used", code="STATE_EXPIRED")
            row.consumed = True
            row.consumed_at = self._now()
            company_id = row.company_id
        return company_id

    def _delete_state(self, state: str) -> None:
        with self.transaction():
            self.state_repository.delete(state)

    def settings_redirect(self, **params: Any) -> str:
        query = {key: str(value).strip() for key, value in params.items() if value is not None}
        query = {key: value for key, value in query.items() if value}
        suffix = f"?{urlencode(query)}" if query else ""
        return f"{self.config.app_base_url}{SETTINGS_PAYMENTS_PATH}{suffix}"

    @BaseService.measure_operation("complete_oauth")
    def complete_oauth(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> str:
        """Handle the provider redirect; always returns the app URL to redirect to."""
        if error:
            return self.settings_redirect(linked=0, reason=error, detail=error_description)
        code = (code or "").strip()
        state = (state or "").strip()
        if not code or not state:
            return self.settings_redirect(linked=0, reason="missing_code_or_state")

        try:
            company_id = self._consume_state(state)
        except ConflictException as exc:
            return self.settings_redirect(linked=0, reason=exc.code.lower())

        try:
            tokens = self.client_factory.oauth().exchange_code(code)
            with self.transaction():
                account = self.save_tokens(company_id, tokens)
                account.linked_at = self._now()
                account.disconnected_at = None
                account.disconnected_by_id = None

            self._refresh_organization(company_id, str(tokens.get("access_token") or ""))
            self._delete_state(state)
        except (MollieError, ValueError, ServiceException) as exc:
            self.logger.warning(
                "Mollie OAuth code exchange failed",
                extra={"company_id": company_id, "error": str(exc)},
            )
            self._delete_state(state)
            return self.settings_redirect(linked=0, reason="token_exchange_failed")

        self.logger.info("Mollie account linked", extra={"company_id": company_id})
        return self.settings_redirect(linked=1, companyId=company_id)

    def _refresh_organization(self, company_id: str, access_token: str) -> None:
        """Best-effort organization, profile and onboarding snapshot after linking."""
        if not access_token:
            return
        client = self.client_factory.for_access_token(access_token)
        organization = self._optional_call(client.get_current_organization)
        onboarding = self._optional_call(
            lambda: client.get_onboarding(testmode=self.config.is_test_mode)
        )
        profiles = self._optional_call(client.list_profiles) or []

        with self.transaction():
            account = self.account_repository.get_or_create(company_id, for_update=True)
            if organization:
                account.organization_id = str(organization.get("id") or "").strip() or None
                account.organization_name = str(organization.get("name") or "").strip() or None
            if profiles:
                account.profile_id = str(profiles[0].get("id") or "").strip() or None
            if onboarding:
                self._apply_onboarding(account, onboarding)

    def _optional_call(self, call: Callable[[], T]) -> Optional[T]:
        try:
            return call()
        except MollieError as exc:
            self.logger.info("Optional Mollie lookup failed: %s", exc)
            return None

    @staticmethod
    def _apply_onboarding(account: CompanyMollieAccount, onboarding: Mapping[str, Any]) -> None:
        account.onboarding_status = str(onboarding.get("status") or "").strip() or None
        account.can_receive_payments = bool(onboarding.get("canReceivePayments"))
        account.can_receive_settlements = bool(onboarding.get("canReceiveSettlements"))
        account.dashboard_onboarding_url = _links_href(onboarding, "dashboard") or None

    @BaseService.measure_operation("disconnect")
    def disconnect(self, actor: User, company_id: str) -> Dict[str, Any]:
        if not company_id:
            raise ValidationException("companyId is required")
        self.permission_service.require_company_manager(actor, company_id)

        with self.transaction():
            account = self.account_repository.get_or_create(company_id, for_update=True)
            account.linked = False
            account.status = "disconnected"
            account.access_token_encrypted = None
            account.refresh_token_encrypted = None
            account.access_token_storage = None
            account.refresh_token_storage = None
            account.legacy_access_token = None
            account.legacy_refresh_token = None
            account.token_type = None
            account.scope = None
            account.expires_at = None
            account.organization_id = None
            account.organization_name = None
            account.profile_id = None
            account.onboarding_status = None
            account.can_receive_payments = False
            account.can_receive_settlements = False
            account.dashboard_onboarding_url = None
            account.disconnected_at = self._now()
            account.disconnected_by_id = actor.id

        self.logger.info(
            "Mollie account disconnected", extra={"company_id": company_id, "actor_id": actor.id}
        )
        return {"company_id": company_id, "status": "disconnected"}

    @BaseService.measure_operation("onboarding_link")
    def onboarding_link(
        self,
        actor: User,
        company_id: str,
        *,
        create_client_link: bool = False,
        owner_email: Optional[str] = None,
        owner_given_name: Optional[str] = None,
        owner_family_name: Optional[str] = None,
        business_name: Optional[str] = None,
        country: str = "NL",
    ) -> Dict[str, Any]:
        """
        Onboarding URL for a salon.

        A linked salon gets its Mollie dashboard onboarding link. An unlinked
        salon can instead be invited with a platform-created client link when
        ``create_client_link`` is set.
        """
        if not company_id:
            raise ValidationException("companyId is required")
        self.permission_service.require_company_manager(actor, company_id)

        try:
            onboarding = self.with_auto_refresh(
                company_id,
                lambda client: client.get_onboarding(testmode=self.config.is_test_mode),
            )
        except (MerchantNotLinkedException, MollieError) as exc:
            if not create_client_link:
                raise MerchantNotLinkedException(
                    company_id, "Mollie account is not linked; start the OAuth flow first"
                ) from exc
            return self._client_link(
                actor,
                company_id,
                owner_email=owner_email,
                owner_given_name=owner_given_name,
                owner_family_name=owner_family_name,
                business_name=business_name,
                country=country,
            )

        with self.transaction():
            account = self.account_repository.get_or_create(company_id, for_update=True)
            self._apply_onboarding(account, onboarding)

        return {
            "mode": "oauth_onboarding",
            "onboarding_status": str(onboarding.get("status") or ""),
            "can_receive_payments": bool(onboarding.get("canReceivePayments")),
            "can_receive_settlements": bool(onboarding.get("canReceiveSettlements")),
            "onboarding_url": _links_href(onboarding, "dashboard"),
        }

    def _client_link(
        self,
        actor: User,
        company_id: str,
        *,
        owner_email: Optional[str],
        owner_given_name: Optional[str],
        owner_family_name: Optional[str],
        business_name: Optional[str],
        country: str,
    ) -> Dict[str, Any]:
        if not self.client_factory.platform_key_configured:
            raise ServiceException(
                "Platform API key is required for client-link onboarding", code="NotConfigured"
            )
        self._require_oauth_configured()

        owner = {
            "email": (owner_email or "").strip(),
            "givenName": (owner_given_name or "").strip(),
            "familyName": (owner_family_name or "").strip(),
        }
        name = (business_name or "").strip()
        country_code = (country or "NL").strip().upper()
        if not all(owner.values()) or not name or not country_code:
            raise ValidationException(
                "Client-link onboarding requires owner email, given name, family name, "
                "business name and country"
            )

        with self.transaction():
            state, _ = self._create_state(company_id, actor.id, CLIENT_LINK_PROVIDER)

        try:
            link = self.client_factory.platform().create_client_link(
                {"owner": owner, "name": name, "address": {"country": country_code}}
            )
        except MollieError as exc:
            raise UpstreamFailureException(str(exc)) from exc

        base_url = _links_href(link, "clientLink")
        if not base_url:
            raise UpstreamFailureException("Mollie returned no client link URL")

        onboarding_url = _with_query(
            base_url,
            {
                "client_id": self.config.mollie_oauth_client_id,
                "state": state,
                "scope": self.config.mollie_oauth_scopes,
                "approval_prompt": "auto",
            },
        )
        with self.transaction():
            account = self.account_repository.get_or_create(company_id, for_update=True)
            account.status = "onboarding"
            account.client_link_url = onboarding_url

        return {"mode": "client_link", "onboarding_url": onboarding_url}
