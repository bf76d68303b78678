# backend/bookbeauty/api/dependencies/auth.py
"""
Authentication dependencies.

Callers present a Firebase ID token as ``Authorization: Bearer <token>``.
Tokens are verified against Google's published signing keys (RS256) with
the project id as audience; the verified uid becomes the ``User`` primary
key and the user row is created on first sight.
"""

from functools import lru_cache
import logging
from typing import Any, Dict, Optional, cast

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from jwt import PyJWKClient, PyJWTError
from sqlalchemy.orm import Session

from ...core.config import Settings, get_settings
from ...models.user import User, UserRole
from .database import get_db

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens; signing keys are fetched lazily and cached."""

    def __init__(self, config: Settings, jwks_client: Optional[PyJWKClient] = None):
        self.project_id = config.firebase_project_id
        self.admin_role = config.admin_role
        self._jwks_url = config.firebase_jwks_url
        self._jwks_client = jwks_client

    @property
    def jwks_client(self) -> PyJWKClient:
        if self._jwks_client is None:
            self._jwks_client = PyJWKClient(self._jwks_url, cache_keys=True)
        return self._jwks_client

    def verify(self, token: str) -> Dict[str, Any]:
        if not self.project_id:
            raise PyJWTError("Firebase project id is not configured")
        signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=self.project_id,
            issuer=f"{FIREBASE_ISSUER_PREFIX}{self.project_id}",
            options={"require": ["exp", "iat", "sub"]},
        )
        if not str(claims.get("sub") or "").strip():
            raise PyJWTError("Token has no subject")
        return cast(Dict[str, Any], claims)

    def role_for(self, claims: Dict[str, Any]) -> str:
        raw = str(claims.get("role") or "").strip().lower()
        if raw == self.admin_role or claims.get("admin") is True:
            return UserRole.ADMIN.value
        if raw in (UserRole.COMPANY.value, UserRole.CUSTOMER.value):
            return raw
        return UserRole.CUSTOMER.value


@lru_cache(maxsize=1)
def get_token_verifier() -> FirebaseTokenVerifier:
    """Process-wide verifier; override in tests."""
    return FirebaseTokenVerifier(get_settings())


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": message, "code": "Unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    verifier: FirebaseTokenVerifier = Depends(get_token_verifier),
) -> User:
    """Verified caller; the user row is upserted from the token claims."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing bearer token")

    try:
        claims = verifier.verify(credentials.credentials)
    except PyJWTError as exc:
        logger.info("Rejected identity token: %s", exc)
        raise _unauthorized("Invalid or expired token")

    uid = str(claims["sub"]).strip()
    role = verifier.role_for(claims)
    user = db.get(User, uid)
    if user is None:
        user = User(
            id=uid,
            email=claims.get("email"),
            display_name=claims.get("name"),
            role=role,
            is_active=True,
        )
        db.add(user)
        db.commit()
        logger.info("Registered new user", extra={"user_id": uid, "role": role})
    elif user.role != role and role == UserRole.ADMIN.value:
        user.role = role
        db.commit()
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Account is disabled", "code": "AccountDisabled"},
        )
    return current_user
