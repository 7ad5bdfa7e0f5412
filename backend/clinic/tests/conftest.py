import os

# Must be set before any clinic module reads the settings
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import clinic.models  # noqa: F401
from clinic.core.database import SessionLocal, engine, get_db
from clinic.core.deps import get_gateway_factory, get_message_channel
from clinic.core.errors import GatewayError
from clinic.main import app
from clinic.models.gateway import GatewayConfig
from clinic.models.patient import Patient
from clinic.models.tenant import Base, Tenant
from clinic.models.treatment import Treatment
from clinic.services import installment_service


class FakeGateway:
    """Stands in for GatewayClient. Calling it plays the role of the factory."""

    def __init__(self):
        self.payments = {}
        self.tokens = []
        self.preference_bodies = []
        self.fetched = []
        self.error = None
        self.account = {"id": 123456, "nickname": "CONSULTORIO", "site_id": "MLA"}

    def __call__(self, access_token):
        self.tokens.append(access_token)
        return self

    def add_payment(self, payment_id, external_reference, status="approved", amount="10000", method="visa"):
        self.payments[str(payment_id)] = {
            "id": payment_id,
            "status": status,
            "transaction_amount": float(amount),
            "payment_method_id": method,
            "external_reference": str(external_reference),
        }

    def create_preference(self, body):
        if self.error:
            raise self.error
        self.preference_bodies.append(body)
        return {
            "id": "PREF-1",
            "init_point": "https://www.mercadopago.com.ar/checkout/v1/redirect?pref_id=PREF-1",
            "sandbox_init_point": "https://sandbox.mercadopago.com.ar/checkout/v1/redirect?pref_id=PREF-1",
        }

    def get_payment(self, payment_id):
        self.fetched.append(payment_id)
        if self.error:
            raise self.error
        if payment_id not in self.payments:
            raise GatewayError("La pasarela respondió 404")
        return self.payments[payment_id]

    def get_account(self):
        if self.error:
            raise self.error
        return self.account


class RecordingChannel:
    def __init__(self, fail_for=None):
        self.sent = []
        self.fail_for = fail_for or set()

    def send(self, phone, message):
        if phone in self.fail_for:
            raise RuntimeError("whatsapp no disponible")
        self.sent.append((phone, message))


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def client(db, gateway, channel):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway_factory] = lambda: gateway
    app.dependency_overrides[get_message_channel] = lambda: channel
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def tenant(db):
    t = Tenant(name="Consultorio Sonrisas", slug="sonrisas")
    db.add(t)
    db.commit()
    return t


@pytest.fixture
def headers(tenant):
    return {"X-Tenant-ID": tenant.slug}


@pytest.fixture
def patient(db, tenant):
    p = Patient(tenant_id=tenant.id, name="Ana Pérez", email="ana@test.com", phone="+5491122223333")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def treatment(db, patient):
    t = Treatment(patient_id=patient.id, name="Ortodoncia", total_cost=Decimal("30000"))
    db.add(t)
    db.commit()
    return t


@pytest.fixture
def make_plan(db, treatment):
    def _make(*installments):
        items = [{"amount": Decimal(str(amount)), "due_date": due} for amount, due in installments]
        plan = installment_service.create_plan(db, treatment.id, items)
        db.commit()
        return plan

    return _make


@pytest.fixture
def installment(make_plan):
    plan = make_plan((10000, date(2025, 3, 10)))
    return plan.installments[0]


@pytest.fixture
def gateway_config(db, tenant):
    config = GatewayConfig(tenant_id=tenant.id, access_token="TEST-123", is_sandbox=True, is_active=True)
    db.add(config)
    db.commit()
    return config
