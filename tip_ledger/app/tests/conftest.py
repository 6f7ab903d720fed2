import hmac
import json
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from ..core.config import Settings
from ..core.db import Database
from ..core.errors import PaymentProviderError
from ..main import create_app
from ..models import CreatorCreate, CreatorModel, TransactionType
from ..services import LedgerService, PaymentService
from ..services.paystack import PaymentInitialization, PaymentVerification, sign_payload

SECRET = "sk_test_0123456789abcdef"


class FakePaymentProvider:
    """Stands in for Paystack; records every call it receives."""

    def __init__(self, secret_key: str = SECRET) -> None:
        self.secret_key = secret_key
        self.initialized: list[dict] = []
        self.verify_calls: list[str] = []
        self.verifications: dict[str, PaymentVerification] = {}
        self.fail_initialize = False
        self.closed = False

    def initialize(self, *, amount, email, reference, metadata, callback_url=None):
        self.initialized.append(
            {
                "amount": amount,
                "email": email,
                "reference": reference,
                "metadata": metadata,
                "callback_url": callback_url,
            }
        )
        if self.fail_initialize:
            raise PaymentProviderError("Paystack init failed: 503")
        return PaymentInitialization(
            authorization_url=f"https://checkout.paystack.test/{reference}",
            reference=reference,
            access_code=f"ac_{reference}",
        )

    def verify(self, reference):
        self.verify_calls.append(reference)
        return self.verifications.get(
            reference, PaymentVerification(reference=reference, status="abandoned", amount=0)
        )

    def verify_signature(self, raw_body, signature):
        if not signature:
            return False
        return hmac.compare_digest(sign_payload(self.secret_key, raw_body), signature)

    def close(self):
        self.closed = True


def charge_success(
    reference: str,
    amount_minor: int,
    creator_id: Optional[UUID] = None,
    supporter_name: Optional[str] = None,
) -> bytes:
    metadata = {}
    if creator_id is not None:
        metadata["creator_id"] = str(creator_id)
    if supporter_name is not None:
        metadata["supporter_name"] = supporter_name
    event = {
        "event": "charge.success",
        "data": {
            "reference": reference,
            "amount": amount_minor,
            "status": "success",
            "metadata": metadata,
            "customer": {"email": "fan@example.com"},
        },
    }
    return json.dumps(event).encode("utf-8")


def signed_headers(body: bytes, secret: str = SECRET) -> dict[str, str]:
    return {"x-paystack-signature": sign_payload(secret, body), "content-type": "application/json"}


def seed_creator(
    database: Database,
    settings: Settings,
    *,
    balance: Optional[Decimal] = None,
) -> UUID:
    with database.new_session() as session:
        service = LedgerService(session, settings=settings)
        creator = service.create_creator(
            CreatorCreate(display_name="Kofi", tiktok_username=f"kofi_{uuid4().hex[:8]}")
        )
        if balance:
            service.apply(creator.id, balance, TransactionType.TIP)
    return creator.id


def read_creator(database: Database, creator_id: UUID) -> CreatorModel:
    with database.new_session() as session:
        return session.get(CreatorModel, creator_id)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        paystack_secret_key=SECRET,
        public_app_url="https://tips.example.test",
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_url, sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    with database.new_session() as session:
        yield session


@pytest.fixture
def provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def ledger(session, settings) -> LedgerService:
    return LedgerService(session, settings=settings)


@pytest.fixture
def payments(session, provider, settings) -> PaymentService:
    return PaymentService(session, provider, settings=settings)


@pytest.fixture
def client(settings, database, provider):
    app = create_app(settings, database=database, provider=provider)
    with TestClient(app) as test_client:
        yield test_client
