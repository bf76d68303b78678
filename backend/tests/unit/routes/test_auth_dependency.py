import time
from types import SimpleNamespace

from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
import jwt
from jwt import PyJWTError
import pytest

from bookbeauty.api.dependencies import get_db, get_payment_service, get_token_verifier
from bookbeauty.api.dependencies.auth import FirebaseTokenVerifier
from bookbeauty.core.exceptions import AlreadyPaidException
from bookbeauty.main import app
from bookbeauty.models.user import User

PROJECT_ID = "bookbeauty-test"


class StaticJWKClient:
    def __init__(self, public_key):
        self._key = SimpleNamespace(key=public_key)

    def get_signing_key_from_jwt(self, token):
        return self._key


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def verifier(test_config, signing_key):
    return FirebaseTokenVerifier(test_config, jwks_client=StaticJWKClient(signing_key.public_key()))


def _token(signing_key, **overrides):
    now = int(time.time())
    claims = {
        "sub": "uid_42",
        "aud": PROJECT_ID,
        "iss": f"https://securetoken.google.com/{PROJECT_ID}",
        "iat": now,
        "exp": now + 3600,
        "email": "new@mail.test",
        "name": "New Customer",
    }
    claims.update(overrides)
    return jwt.encode(claims, signing_key, algorithm="RS256")


class TestVerifier:
    def test_valid_token(self, verifier, signing_key):
        claims = verifier.verify(_token(signing_key))

        assert claims["sub"] == "uid_42"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"aud": "another-project"},
            {"iss": "https://securetoken.google.com/another-project"},
            {"exp": int(time.time()) - 10},
            {"sub": "   "},
        ],
    )
    def test_rejected_tokens(self, verifier, signing_key, overrides):
        with pytest.raises(PyJWTError):
            verifier.verify(_token(signing_key, **overrides))

    def test_foreign_signature_is_rejected(self, verifier):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

        with pytest.raises(PyJWTError):
            verifier.verify(_token(other_key))

    def test_missing_project_is_rejected(self, test_config, signing_key):
        unconfigured = FirebaseTokenVerifier(
            test_config.model_copy(update={"firebase_project_id": ""}),
            jwks_client=StaticJWKClient(signing_key.public_key()),
        )

        with pytest.raises(PyJWTError):
            unconfigured.verify(_token(signing_key))

    @pytest.mark.parametrize(
        "claims, role",
        [
            ({"role": "company"}, "company"),
            ({"role": "ADMIN"}, "admin"),
            ({"admin": True}, "admin"),
            ({"role": "superuser"}, "customer"),
            ({}, "customer"),
        ],
    )
    def test_role_for(self, verifier, claims, role):
        assert verifier.role_for(claims) == role


class TestCurrentUser:
    @pytest.fixture
    def client(self, unit_db, verifier):
        def _db():
            yield unit_db

        def _create_payment(actor, booking_id, amount_cents=None):
            raise AlreadyPaidException(booking_id)

        app.dependency_overrides[get_db] = _db
        app.dependency_overrides[get_token_verifier] = lambda: verifier
        app.dependency_overrides[get_payment_service] = lambda: SimpleNamespace(create_payment=_create_payment)
        try:
            yield TestClient(app)
        finally:
            app.dependency_overrides.clear()

    def _create(self, client, token=None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return client.post("/api/v1/payments/create", json={"bookingId": "bk_1"}, headers=headers)

    def test_missing_token_is_unauthorized(self, client):
        response = self._create(client)

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_invalid_token_is_unauthorized(self, client, signing_key):
        response = self._create(client, _token(signing_key, aud="another-project"))

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "Unauthorized"

    def test_first_request_registers_user(self, client, unit_db, signing_key):
        response = self._create(client, _token(signing_key, role="company"))

        assert response.status_code == 409
        user = unit_db.get(User, "uid_42")
        assert user is not None
        assert user.role == "company"
        assert user.email == "new@mail.test"
        assert user.display_name == "New Customer"

    def test_disabled_user_is_forbidden(self, client, unit_db, signing_key):
        unit_db.add(User(id="uid_disabled", role="customer", is_active=False))
        unit_db.commit()

        response = self._create(client, _token(signing_key, sub="uid_disabled"))

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "AccountDisabled"
