from decimal import Decimal
from typing import Any, Dict

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from bookbeauty.core.config import Settings
from bookbeauty.database import Base
from bookbeauty.integrations.mollie_client import MollieClientFactory

# Import models so Base.metadata is populated for reflection/create_all.
import bookbeauty.models  # noqa: F401
from bookbeauty.models.company import Company
from bookbeauty.models.service import Service
from bookbeauty.models.user import User
from tests.helpers.mollie_fake import FakeMollie
from tests.utils.time import Clock

TOKEN_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


@pytest.fixture(scope="session")
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over transaction start.
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def unit_db(_unit_engine) -> Session:
    """
    Provide a session bound to the shared in-memory engine.

    The session runs inside a SAVEPOINT of an outer transaction, so service
    commits and rollbacks behave normally and everything is discarded when
    the test ends.
    """
    connection = _unit_engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def test_config() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite+pysqlite:///:memory:",
        app_base_url="https://app.bookbeauty.test/",
        booking_timezone="Europe/Amsterdam",
        mollie_api_key_platform="test_platformkey123",
        mollie_mode="test",
        mollie_webhook_url="https://api.bookbeauty.test/api/v1/webhooks/mollie",
        mollie_oauth_client_id="app_client",
        mollie_oauth_client_secret="app_secret",
        mollie_oauth_redirect_uri="https://api.bookbeauty.test/api/v1/mollie/oauth/callback",
        mollie_token_encryption_key=TOKEN_KEY_HEX,
        firebase_project_id="bookbeauty-test",
    )


@pytest.fixture
def live_config(test_config: Settings) -> Settings:
    return test_config.model_copy(update={"mollie_mode": "live"})


@pytest.fixture
def fake_mollie() -> FakeMollie:
    return FakeMollie()


@pytest.fixture
def client_factory(test_config: Settings, fake_mollie: FakeMollie) -> MollieClientFactory:
    return MollieClientFactory(test_config, transport=fake_mollie.transport)


@pytest.fixture
def salon(unit_db: Session) -> Dict[str, Any]:
    """A salon with an owner, a customer, an admin and a 60 minute service."""
    owner = User(id="owner_1", email="owner@salon.test", display_name="Olga Owner", role="company")
    customer = User(id="cust_1", email="cust@mail.test", display_name="Chris Customer", role="customer")
    other = User(id="cust_2", email="other@mail.test", display_name="Other Customer", role="customer")
    admin = User(id="admin_1", email="admin@bookbeauty.test", role="admin")
    company = Company(
        id="co_1",
        owner_id=owner.id,
        name="Salon Amsterdam",
        booking_enabled=True,
        booking_interval_minutes=30,
        booking_capacity=1,
        auto_confirm=False,
        cancellation_policy={"hold_percent": 15, "platform_fee_percent_rule": 8},
    )
    service = Service(
        id="svc_cut",
        company_id=company.id,
        name="Haircut",
        duration_minutes=60,
        buffer_before_minutes=0,
        buffer_after_minutes=0,
        price=Decimal("25.00"),
        is_active=True,
    )
    unit_db.add_all([owner, customer, other, admin, company, service])
    unit_db.commit()
    return {
        "owner": owner,
        "customer": customer,
        "other": other,
        "admin": admin,
        "company": company,
        "service": service,
    }
