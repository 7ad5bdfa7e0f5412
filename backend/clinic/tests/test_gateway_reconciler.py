from datetime import date
from decimal import Decimal

import pytest

from clinic.core.errors import ConfigurationError, GatewayError, ValidationError
from clinic.models.gateway import GatewayConfig, GatewayTransaction
from clinic.models.payment import Payment
from clinic.services import gateway_reconciler, payment_ledger
from clinic.services.gateway_reconciler import WebhookOutcome


def _webhook(installment_id, payment_id="PAY123", event_type="payment"):
    return {"type": event_type, "data": {"id": payment_id}, "external_reference": str(installment_id)}


def test_approved_payment_settles_installment(db, gateway, gateway_config, installment):
    gateway.add_payment("PAY123", installment.id, amount="10000", method="visa")

    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id))

    assert outcome == WebhookOutcome.settled
    assert gateway.tokens == ["TEST-123"]
    assert installment.state == "paid"
    assert installment.total_paid == Decimal("10000.00")
    assert installment.gateway_payment_id == "PAY123"
    assert "PAY123" in installment.notes
    tx = db.query(GatewayTransaction).one()
    assert (tx.payment_id, tx.status, tx.payment_method) == ("PAY123", "approved", "visa")
    payment = db.query(Payment).one()
    assert payment.method == "gateway_pay"
    assert payment.amount == Decimal("10000.00")


def test_duplicate_delivery_settles_once(db, gateway, gateway_config, installment):
    gateway.add_payment("PAY123", installment.id)

    first = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id))
    second = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id))

    assert (first, second) == (WebhookOutcome.settled, WebhookOutcome.duplicate)
    assert db.query(GatewayTransaction).filter(GatewayTransaction.payment_id == "PAY123").count() == 1
    assert db.query(Payment).count() == 1
    # The duplicate is detected before asking the gateway again
    assert gateway.fetched == ["PAY123"]


def test_concurrent_claim_loses_on_unique_constraint(db, gateway, gateway_config, installment, monkeypatch):
    gateway.add_payment("PAY123", installment.id)
    gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id))

    # Simulates a second delivery that passed the pre-check at the same time
    monkeypatch.setattr(gateway_reconciler, "_already_processed", lambda *args: False)
    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id))

    assert outcome == WebhookOutcome.duplicate
    assert db.query(GatewayTransaction).count() == 1
    assert db.query(Payment).count() == 1


def test_gateway_settlement_after_partial_manual_payment(db, tenant, gateway, gateway_config, installment):
    payment_ledger.record_payment(db, tenant.id, {"installment_id": installment.id, "amount": Decimal("4000")})
    db.commit()
    gateway.add_payment("PAY5", installment.id, amount="10000")

    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id, "PAY5"))

    assert outcome == WebhookOutcome.settled
    assert installment.total_paid == installment.amount
    amounts = sorted(p.amount for p in db.query(Payment).all())
    assert amounts == [Decimal("4000.00"), Decimal("6000.00")]
    assert sum(amounts) == installment.total_paid


def test_unknown_reference_writes_nothing(db, gateway, gateway_config, installment):
    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(99999))

    assert outcome == WebhookOutcome.not_found
    assert gateway.fetched == []
    assert db.query(GatewayTransaction).count() == 0
    assert installment.state == "pending"


def test_webhook_without_config(db, gateway, installment):
    gateway.add_payment("PAY123", installment.id)

    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id))

    assert outcome == WebhookOutcome.not_configured
    assert db.query(GatewayTransaction).count() == 0


def test_non_approved_payment_is_not_settled(db, gateway, gateway_config, installment):
    gateway.add_payment("PAY7", installment.id, status="in_process")

    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id, "PAY7"))

    assert outcome == WebhookOutcome.not_approved
    assert installment.state == "pending"
    assert db.query(GatewayTransaction).count() == 0

    # Approval arriving later for the same payment still settles
    gateway.add_payment("PAY7", installment.id, status="approved")
    assert gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id, "PAY7")) == WebhookOutcome.settled


def test_reference_mismatch_is_rejected(db, gateway, gateway_config, installment):
    gateway.add_payment("PAY8", "4242")

    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id, "PAY8"))

    assert outcome == WebhookOutcome.mismatch
    assert installment.state == "pending"


def test_gateway_unreachable_is_failed(db, gateway, gateway_config, installment):
    gateway.error = GatewayError("Timeout conectando con la pasarela de pagos")

    outcome = gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id))

    assert outcome == WebhookOutcome.failed
    assert db.query(GatewayTransaction).count() == 0


def test_non_payment_events_are_ignored(db, gateway, gateway_config, installment):
    assert gateway_reconciler.handle_webhook(db, gateway, _webhook(installment.id, event_type="merchant_order")) == WebhookOutcome.ignored
    assert gateway_reconciler.handle_webhook(db, gateway, {"type": "payment", "data": {"id": "PAY1"}}) == WebhookOutcome.ignored
    assert gateway.fetched == []


def test_malformed_envelope(db, gateway):
    with pytest.raises(ValidationError):
        gateway_reconciler.handle_webhook(db, gateway, {"type": "payment", "data": {}})
    with pytest.raises(ValidationError):
        gateway_reconciler.handle_webhook(db, gateway, ["payment"])


def test_create_preference(db, tenant, gateway, gateway_config, installment):
    result = gateway_reconciler.create_preference(
        db, gateway, tenant.id, installment.id, Decimal("10000"), concept="Cuota 1", payer_email="ana@test.com"
    )
    db.commit()

    assert result["preference_id"] == "PREF-1"
    assert result["sandbox"] is True
    assert result["checkout_url"].startswith("https://sandbox.")
    assert installment.gateway_preference_id == "PREF-1"
    tx = db.query(GatewayTransaction).one()
    assert (tx.status, tx.payment_id) == ("created", None)

    body = gateway.preference_bodies[0]
    assert body["external_reference"] == str(installment.id)
    assert body["items"][0]["unit_price"] == 10000.0
    assert body["items"][0]["currency_id"] == "ARS"
    assert body["notification_url"].endswith("/payment-gateway/webhook")
    assert body["payer"]["email"] == "ana@test.com"


def test_create_preference_production_url(db, tenant, gateway, gateway_config, installment):
    gateway_config.is_sandbox = False
    db.commit()

    result = gateway_reconciler.create_preference(db, gateway, tenant.id, installment.id, Decimal("10000"))

    assert result["sandbox"] is False
    assert result["checkout_url"].startswith("https://www.")


def test_create_preference_requires_config(db, tenant, gateway, installment):
    with pytest.raises(ConfigurationError):
        gateway_reconciler.create_preference(db, gateway, tenant.id, installment.id, Decimal("10000"))
    assert gateway.tokens == []


def test_create_preference_gateway_failure_leaves_installment(db, tenant, gateway, gateway_config, installment):
    gateway.error = GatewayError("La pasarela respondió 500")

    with pytest.raises(GatewayError):
        gateway_reconciler.create_preference(db, gateway, tenant.id, installment.id, Decimal("10000"))
    db.rollback()

    assert installment.gateway_preference_id is None
    assert db.query(GatewayTransaction).count() == 0


def test_upsert_config_deactivates_previous(db, tenant, gateway_config):
    config = gateway_reconciler.upsert_gateway_config(db, tenant.id, " APP-999 ", is_sandbox=False)
    db.commit()

    assert config.access_token == "APP-999"
    assert gateway_reconciler.get_active_config(db, tenant.id).id == config.id
    assert db.query(GatewayConfig).filter(GatewayConfig.is_active == True).count() == 1  # noqa: E712
    assert [c.is_active for c in tenant.gateway_configs] == [False, True]


def test_verify_credentials(gateway):
    info = gateway_reconciler.verify_credentials(gateway, "APP-1")
    assert info == {"id": 123456, "nickname": "CONSULTORIO", "country": "MLA"}
