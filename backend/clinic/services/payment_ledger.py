"""
Libro de ingresos (pagos).

Registra pagos manuales y acreditaciones de la pasarela. Cuando un pago
apunta a una cuota, su monto impacta el total pagado de esa cuota dentro
de la misma transacción. NO hace commit.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from clinic.core.enums import PaymentBucket, PaymentMethod, bucket_for
from clinic.core.errors import NotFoundError, ValidationError
from clinic.models.payment import Payment
from clinic.services import installment_service
from clinic.services.installment_service import to_money

EDITABLE_FIELDS = {"patient_id", "installment_id", "amount", "method", "concept", "note", "payment_date"}
# Columnas NOT NULL: se pueden cambiar, no vaciar
REQUIRED_FIELDS = {"amount", "method", "concept", "payment_date"}


def _check_installment_tenant(db: Session, tenant_id: int, installment_id: int) -> None:
    installment = installment_service.get_installment(db, installment_id)
    if installment_service.resolve_tenant_id(db, installment) != tenant_id:
        raise NotFoundError(f"Cuota {installment_id} no encontrada")


def _ensure_manual(db: Session, payment: Payment) -> None:
    if payment.gateway_payment_id:
        raise ValidationError("Los pagos acreditados por la pasarela no se pueden modificar")
    if payment.installment_id:
        installment = installment_service.get_installment(db, payment.installment_id)
        if installment.gateway_payment_id:
            raise ValidationError(
                f"La cuota {installment.number} fue liquidada por la pasarela; no admite cambios manuales"
            )


def record_payment(db: Session, tenant_id: int, data: Dict[str, Any]) -> Payment:
    """
    Registra un ingreso. Si trae `installment_id`, suma el monto a la cuota.

    Todo o nada: si la cuota rechaza el monto (OverpaymentError) el pago no
    queda agregado a la sesión.
    """
    amount = to_money(data.get("amount"))
    if amount <= 0:
        raise ValidationError("El monto del pago debe ser positivo")

    installment_id = data.get("installment_id")
    if installment_id is not None:
        _check_installment_tenant(db, tenant_id, installment_id)
        installment_service.apply_payment_delta(db, installment_id, amount)

    payment = Payment(
        tenant_id=tenant_id,
        patient_id=data.get("patient_id"),
        installment_id=installment_id,
        amount=amount,
        method=PaymentMethod(data.get("method") or PaymentMethod.cash).value,
        concept=data.get("concept") or "Pago de cuota",
        note=data.get("note"),
        payment_date=data.get("payment_date") or date.today(),
        gateway_payment_id=data.get("gateway_payment_id"),
    )
    db.add(payment)
    db.flush()
    return payment


def get_payment(db: Session, tenant_id: int, payment_id: int) -> Payment:
    payment = db.query(Payment).filter(
        Payment.id == payment_id,
        Payment.tenant_id == tenant_id,
    ).first()
    if not payment:
        raise NotFoundError(f"Pago {payment_id} no encontrado")
    return payment


def edit_payment(db: Session, tenant_id: int, payment_id: int, fields: Dict[str, Any]) -> Payment:
    """
    Edita un pago manual re-derivando el impacto en la cuota:
    resta el monto viejo de la cuota anterior y suma el nuevo a la actual.
    """
    payment = get_payment(db, tenant_id, payment_id)
    _ensure_manual(db, payment)

    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Campos no editables: {', '.join(sorted(unknown))}")
    cleared = sorted(key for key in REQUIRED_FIELDS if key in fields and fields[key] is None)
    if cleared:
        raise ValidationError(f"Campos obligatorios: {', '.join(cleared)}")

    old_amount = to_money(payment.amount)
    old_installment_id = payment.installment_id
    new_amount = to_money(fields["amount"]) if "amount" in fields else old_amount
    new_installment_id = fields.get("installment_id", old_installment_id)

    if new_amount <= 0:
        raise ValidationError("El monto del pago debe ser positivo")

    if new_installment_id is not None and new_installment_id != old_installment_id:
        _check_installment_tenant(db, tenant_id, new_installment_id)
        target = installment_service.get_installment(db, new_installment_id)
        if target.gateway_payment_id:
            raise ValidationError(
                f"La cuota {target.number} fue liquidada por la pasarela; no admite cambios manuales"
            )

    # Primero se revierte, después se aplica: si la cuota es la misma el
    # control de sobrepago ve el saldo sin el monto viejo.
    if old_installment_id is not None:
        installment_service.apply_payment_delta(db, old_installment_id, -old_amount)
    if new_installment_id is not None:
        installment_service.apply_payment_delta(db, new_installment_id, new_amount)

    for key, value in fields.items():
        if key == "amount":
            value = new_amount
        elif key == "method":
            value = PaymentMethod(value).value
        setattr(payment, key, value)

    db.flush()
    return payment


def delete_payment(db: Session, tenant_id: int, payment_id: int) -> None:
    """Elimina un pago manual y revierte su monto en la cuota vinculada."""
    payment = get_payment(db, tenant_id, payment_id)
    _ensure_manual(db, payment)

    if payment.installment_id is not None:
        installment_service.apply_payment_delta(db, payment.installment_id, -to_money(payment.amount))

    db.delete(payment)
    db.flush()


def list_by_date(db: Session, tenant_id: int, day: date) -> List[Payment]:
    return db.query(Payment).filter(
        Payment.tenant_id == tenant_id,
        Payment.payment_date == day,
    ).order_by(Payment.created_at, Payment.id).all()


def _payments_in_range(db: Session, tenant_id: int, start: date, end: date) -> List[Payment]:
    if start > end:
        raise ValidationError("start must be <= end")
    return db.query(Payment).filter(
        Payment.tenant_id == tenant_id,
        Payment.payment_date >= start,
        Payment.payment_date <= end,
    ).all()


def _empty_buckets() -> Dict[str, Decimal]:
    return {bucket.value: Decimal("0.00") for bucket in PaymentBucket}


def sum_by_method(db: Session, tenant_id: int, start: date, end: date) -> Dict[str, Decimal]:
    """
    Totales por grupo de medio de pago: cash, bank_transfer (incluye la
    pasarela) y other. Los tres grupos siempre están presentes.
    """
    totals = _empty_buckets()
    for payment in _payments_in_range(db, tenant_id, start, end):
        totals[bucket_for(payment.method).value] += to_money(payment.amount)
    return totals


def daily_totals(db: Session, tenant_id: int, start: date, end: date) -> List[Dict[str, Any]]:
    """Desglose diario por grupo de medio de pago, del día más reciente al más viejo."""
    by_day: Dict[date, Dict[str, Any]] = {}
    for payment in _payments_in_range(db, tenant_id, start, end):
        row = by_day.setdefault(
            payment.payment_date,
            {"date": payment.payment_date, **_empty_buckets(), "total": Decimal("0.00")},
        )
        amount = to_money(payment.amount)
        row[bucket_for(payment.method).value] += amount
        row["total"] += amount
    return sorted(by_day.values(), key=lambda r: r["date"], reverse=True)


def record_gateway_payment(
    db: Session,
    tenant_id: int,
    installment_id: int,
    patient_id: Optional[int],
    amount: Decimal,
    gateway_payment_id: str,
    note: Optional[str] = None,
) -> Payment:
    """
    Asiento de un pago de la pasarela. La cuota ya fue liquidada por
    mark_gateway_paid, así que acá no se aplica delta.
    """
    payment = Payment(
        tenant_id=tenant_id,
        patient_id=patient_id,
        installment_id=installment_id,
        amount=to_money(amount),
        method=PaymentMethod.gateway_pay.value,
        concept="Pago de cuota (pasarela)",
        note=note,
        payment_date=date.today(),
        gateway_payment_id=str(gateway_payment_id),
    )
    db.add(payment)
    db.flush()
    return payment
