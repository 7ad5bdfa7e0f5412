from datetime import date
from decimal import Decimal

import pytest

from clinic.core.errors import NotFoundError, OverpaymentError, ValidationError
from clinic.models.payment import Payment
from clinic.services import installment_service, payment_ledger


def _pay(db, tenant, installment=None, amount="4000", method="cash", day=date(2025, 3, 5)):
    payment = payment_ledger.record_payment(db, tenant.id, {
        "installment_id": installment.id if installment else None,
        "amount": Decimal(amount),
        "method": method,
        "payment_date": day,
    })
    db.commit()
    return payment


def test_record_and_delete_restores_installment(db, tenant, make_plan):
    installment = make_plan((10000, date(2030, 3, 10))).installments[0]

    payment = _pay(db, tenant, installment, amount="10000")
    assert installment.state == "paid"
    assert installment.total_paid == Decimal("10000.00")

    payment_ledger.delete_payment(db, tenant.id, payment.id)
    db.commit()

    assert installment.state == "pending"
    assert installment.total_paid == Decimal("0.00")
    assert db.query(Payment).count() == 0


def test_overpayment_persists_nothing(db, tenant, installment):
    _pay(db, tenant, installment, amount="4000")

    with pytest.raises(OverpaymentError):
        payment_ledger.record_payment(db, tenant.id, {"installment_id": installment.id, "amount": Decimal("6001")})
    db.rollback()

    assert db.query(Payment).count() == 1
    assert installment.total_paid == Decimal("4000.00")


def test_record_rejects_non_positive_and_foreign_installment(db, tenant, installment):
    with pytest.raises(ValidationError):
        payment_ledger.record_payment(db, tenant.id, {"amount": Decimal("0")})
    with pytest.raises(NotFoundError):
        payment_ledger.record_payment(db, tenant.id + 1, {"installment_id": installment.id, "amount": Decimal("10")})


def test_edit_rederives_balance(db, tenant, make_plan):
    first, second = make_plan((10000, date(2025, 3, 10)), (10000, date(2025, 4, 10))).installments
    payment = _pay(db, tenant, first, amount="4000")

    payment_ledger.edit_payment(db, tenant.id, payment.id, {"amount": Decimal("10000")})
    db.commit()
    assert first.total_paid == Decimal("10000.00")
    assert first.state == "paid"

    payment_ledger.edit_payment(db, tenant.id, payment.id, {"installment_id": second.id, "amount": Decimal("2500")})
    db.commit()
    assert first.total_paid == Decimal("0.00")
    assert first.state == "pending"
    assert second.total_paid == Decimal("2500.00")


def test_edit_overpayment_leaves_everything_untouched(db, tenant, installment):
    payment = _pay(db, tenant, installment, amount="4000")

    with pytest.raises(OverpaymentError):
        payment_ledger.edit_payment(db, tenant.id, payment.id, {"amount": Decimal("10001")})
    db.rollback()

    assert installment.total_paid == Decimal("4000.00")
    assert payment.amount == Decimal("4000.00")


@pytest.mark.parametrize("field", ["amount", "method", "concept", "payment_date"])
def test_edit_cannot_clear_required_fields(db, tenant, installment, field):
    payment = _pay(db, tenant, installment, amount="4000")

    with pytest.raises(ValidationError, match=field):
        payment_ledger.edit_payment(db, tenant.id, payment.id, {field: None})
    db.rollback()

    assert payment.amount == Decimal("4000.00")
    assert payment.method == "cash"
    assert payment.concept == "Pago de cuota"
    assert payment.payment_date == date(2025, 3, 5)
    assert installment.total_paid == Decimal("4000.00")

    # note sí admite null
    payment_ledger.edit_payment(db, tenant.id, payment.id, {"note": None})
    db.commit()
    assert payment.note is None

def test_gateway_settled_installment_rejects_manual_changes(db, tenant, installment):
    payment = _pay(db, tenant, installment, amount="4000")
    installment_service.mark_gateway_paid(db, installment.id, "PAY9")
    gateway_payment = payment_ledger.record_gateway_payment(
        db, tenant.id, installment.id, None, Decimal("6000"), "PAY9"
    )
    db.commit()

    with pytest.raises(ValidationError):
        payment_ledger.delete_payment(db, tenant.id, payment.id)
    with pytest.raises(ValidationError):
        payment_ledger.edit_payment(db, tenant.id, gateway_payment.id, {"note": "x"})
    db.rollback()
    assert db.query(Payment).count() == 2


def test_sum_by_method_buckets(db, tenant):
    _pay(db, tenant, amount="1000", method="cash")
    _pay(db, tenant, amount="2000", method="bank_transfer")
    _pay(db, tenant, amount="3000", method="gateway_pay")
    _pay(db, tenant, amount="500", method="credit_card")
    # Legacy value written by an older client
    db.add(Payment(tenant_id=tenant.id, amount=Decimal("250"), method="cheque", concept="x", payment_date=date(2025, 3, 5)))
    _pay(db, tenant, amount="9999", method="cash", day=date(2025, 4, 1))

    totals = payment_ledger.sum_by_method(db, tenant.id, date(2025, 3, 1), date(2025, 3, 31))

    assert totals == {
        "cash": Decimal("1000.00"),
        "bank_transfer": Decimal("5000.00"),
        "other": Decimal("750.00"),
    }


def test_sum_by_method_empty_range_has_all_buckets(db, tenant):
    totals = payment_ledger.sum_by_method(db, tenant.id, date(2025, 3, 1), date(2025, 3, 31))
    assert totals == {"cash": Decimal("0.00"), "bank_transfer": Decimal("0.00"), "other": Decimal("0.00")}


def test_daily_totals_newest_first(db, tenant):
    _pay(db, tenant, amount="1000", method="cash", day=date(2025, 3, 4))
    _pay(db, tenant, amount="2000", method="gateway_pay", day=date(2025, 3, 5))
    _pay(db, tenant, amount="300", method="cash", day=date(2025, 3, 5))

    rows = payment_ledger.daily_totals(db, tenant.id, date(2025, 3, 1), date(2025, 3, 31))

    assert [r["date"] for r in rows] == [date(2025, 3, 5), date(2025, 3, 4)]
    assert rows[0]["cash"] == Decimal("300.00")
    assert rows[0]["bank_transfer"] == Decimal("2000.00")
    assert rows[0]["total"] == Decimal("2300.00")


def test_list_by_date(db, tenant):
    _pay(db, tenant, amount="1000", day=date(2025, 3, 4))
    _pay(db, tenant, amount="2000", day=date(2025, 3, 5))

    assert [p.amount for p in payment_ledger.list_by_date(db, tenant.id, date(2025, 3, 5))] == [Decimal("2000.00")]
