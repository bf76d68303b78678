"""Minimal Mollie API and Mollie Connect OAuth clients."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import SecretStr

from ..core.constants import CURRENCY, MOLLIE_AUTHORIZE_URL, MOLLIE_TOKEN_URL

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.mollie.com/v2"


class MollieError(RuntimeError):
    """Raised when the Mollie API responds with an error or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body


def is_auth_error(exc: BaseException) -> bool:
    """True when a provider failure means the access token is no longer accepted."""

    status = getattr(exc, "status_code", None)
    if status in (401, 403):
        return True
    message = str(exc).lower()
    return "unauthorized" in message or "invalid_token" in message


def amount_value(cents: int) -> str:
    """Format integer cents as Mollie's decimal string ("12.34")."""

    cents = int(cents)
    sign = "-" if cents < 0 else ""
    whole, rest = divmod(abs(cents), 100)
    return f"{sign}{whole}.{rest:02d}"


def money(cents: int) -> Dict[str, str]:
    return {"currency": CURRENCY, "value": amount_value(cents)}


def checkout_url(payment: Dict[str, Any]) -> str:
    links = payment.get("_links") or {}
    checkout = links.get("checkout") or {}
    return str(checkout.get("href") or "").strip()


def _secret(value: str | SecretStr | None) -> str:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    return value or ""


def _raise_for_response(response: httpx.Response, method: str, path: str) -> None:
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        error_payload: Any | None = None
        detail = ""
        try:
            error_payload = exc.response.json()
            if isinstance(error_payload, dict):
                detail = str(
                    error_payload.get("detail")
                    or error_payload.get("error_description")
                    or error_payload.get("title")
                    or error_payload.get("error")
                    or ""
                )
        except json.JSONDecodeError:
            error_payload = exc.response.text

        logger.error(
            "Mollie API error %s for %s %s: %s",
            status,
            method,
            path,
            exc.response.text[:500],
        )
        message = f"Mollie API responded with status {status}"
        if detail:
            message = f"{message}: {detail}"
        raise MollieError(message, status_code=status, error_body=error_payload) from exc


class MollieClient:
    """
    Thin client for the Mollie v2 REST API.

    Authenticates either with an API key (platform account) or with an OAuth
    access token (connected salon account); both are sent as a bearer token.
    """

    def __init__(
        self,
        *,
        bearer_token: str | SecretStr,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        token = _secret(bearer_token)
        if not token:
            raise ValueError("Mollie API key or access token must be provided")

        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_payment(
        self,
        payload: Dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> Dict[str, Any]:
        """Create a payment; a repeated idempotency key returns the original payment."""

        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return self.request("POST", "/payments", json_body=payload, headers=headers)

    def get_payment(self, payment_id: str, *, testmode: bool | None = None) -> Dict[str, Any]:
        if not payment_id:
            raise ValueError("payment_id must be provided")
        params = {"testmode": "true"} if testmode else None
        return self.request("GET", f"/payments/{payment_id}", params=params)

    def create_refund(
        self,
        payment_id: str,
        payload: Dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> Dict[str, Any]:
        if not payment_id:
            raise ValueError("payment_id must be provided")
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return self.request(
            "POST", f"/payments/{payment_id}/refunds", json_body=payload, headers=headers
        )

    def get_current_organization(self) -> Dict[str, Any]:
        return self.request("GET", "/organizations/me")

    def get_onboarding(self, *, testmode: bool | None = None) -> Dict[str, Any]:
        params = {"testmode": "true"} if testmode else None
        return self.request("GET", "/onboarding/me", params=params)

    def list_profiles(self) -> List[Dict[str, Any]]:
        payload = self.request("GET", "/profiles", params={"limit": 5})
        embedded = payload.get("_embedded") or {}
        profiles = embedded.get("profiles") or []
        return [p for p in profiles if isinstance(p, dict)]

    def create_client_link(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/client-links", json_body=payload)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw Mollie API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {self._token}",
            },
        ) as client:
            try:
                response = client.request(
                    method, url, json=json_body, params=params, headers=headers
                )
            except httpx.RequestError as exc:
                logger.error("Mollie request failure for %s %s: %s", method, path, str(exc))
                raise MollieError(f"Mollie request failed: {exc}") from exc

            _raise_for_response(response, method, path)
            if not response.content:
                return {}
            data = response.json()
            return data if isinstance(data, dict) else {"data": data}


class MollieOAuthClient:
    """Mollie Connect authorization-code and refresh-token flows."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str | SecretStr,
        redirect_uri: str,
        authorize_url: str = MOLLIE_AUTHORIZE_URL,
        token_url: str = MOLLIE_TOKEN_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret = _secret(client_secret)
        if not client_id or not secret or not redirect_uri:
            raise ValueError("Mollie OAuth client id, secret and redirect URI are required")

        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self._authorize_url = authorize_url
        self._token_url = token_url
        self._timeout = timeout
        self._transport = transport
        self._auth = httpx.BasicAuth(client_id, secret)

    def build_authorize_url(self, *, state: str, scopes: str) -> str:
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "state": state,
                "scope": scopes,
                "approval_prompt": "auto",
            }
        )
        return f"{self._authorize_url}?{query}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        if not code:
            raise ValueError("authorization code must be provided")
        return self._token_request({"grant_type": "authorization_code", "code": code})

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        if not refresh_token:
            raise MollieError("No refresh token available")
        return self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        body = dict(form, redirect_uri=self.redirect_uri)
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            auth=self._auth,
            headers={"Accept": "application/json"},
        ) as client:
            try:
                response = client.post(self._token_url, data=body)
            except httpx.RequestError as exc:
                logger.error("Mollie token request failure: %s", str(exc))
                raise MollieError(f"Mollie token request failed: {exc}") from exc

            _raise_for_response(response, "POST", "/oauth2/tokens")
            payload = response.json()
            if not isinstance(payload, dict):
                raise MollieError("Mollie token response was not an object")
            return payload


class MollieClientFactory:
    """
    Builds Mollie clients from settings.

    One factory is created per process and injected into services; tests pass
    their own with an ``httpx.MockTransport``.
    """

    def __init__(self, config, *, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    @property
    def platform_key_configured(self) -> bool:
        return bool(_secret(self._config.mollie_api_key_platform))

    def platform(self) -> MollieClient:
        return MollieClient(
            bearer_token=self._config.mollie_api_key_platform,
            base_url=self._config.mollie_api_base_url,
            transport=self._transport,
        )

    def for_access_token(self, access_token: str) -> MollieClient:
        return MollieClient(
            bearer_token=access_token,
            base_url=self._config.mollie_api_base_url,
            transport=self._transport,
        )

    def oauth(self) -> MollieOAuthClient:
        return MollieOAuthClient(
            client_id=self._config.mollie_oauth_client_id,
            client_secret=self._config.mollie_oauth_client_secret,
            redirect_uri=self._config.mollie_oauth_redirect_uri,
            transport=self._transport,
        )
