from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinic.core.database import get_db
from clinic.core.deps import get_tenant
from clinic.core.enums import PaymentMethod
from clinic.core.serializers import iso, money, serialize_payment
from clinic.models.tenant import Tenant
from clinic.services import payment_ledger

router = APIRouter()


class PaymentCreate(BaseModel):
    patient_id: Optional[int] = None
    installment_id: Optional[int] = None
    amount: Decimal
    method: PaymentMethod = PaymentMethod.cash
    concept: str = "Pago de cuota"
    note: Optional[str] = None
    payment_date: Optional[date] = None


class PaymentUpdate(BaseModel):
    patient_id: Optional[int] = None
    installment_id: Optional[int] = None
    amount: Optional[Decimal] = None
    method: Optional[PaymentMethod] = None
    concept: Optional[str] = None
    note: Optional[str] = None
    payment_date: Optional[date] = None


@router.post("/")
def register_payment(
    data: PaymentCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Register an income, optionally applied to an installment"""
    try:
        payment = payment_ledger.record_payment(db, tenant.id, data.model_dump())
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(payment)
    return serialize_payment(payment)


@router.get("/")
def list_payments(
    day: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    payments = payment_ledger.list_by_date(db, tenant.id, day or date.today())
    return [serialize_payment(p) for p in payments]


@router.get("/summary")
def payments_summary(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Income totals grouped by payment method bucket"""
    totals = payment_ledger.sum_by_method(db, tenant.id, start, end)
    by_method = {bucket: money(amount) for bucket, amount in totals.items()}
    return {"by_method": by_method, "total": money(sum(totals.values()))}


@router.get("/daily")
def payments_daily(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    rows = payment_ledger.daily_totals(db, tenant.id, start, end)
    return [
        {key: iso(value) if key == "date" else money(value) for key, value in row.items()}
        for row in rows
    ]


@router.patch("/{payment_id}")
def update_payment(
    payment_id: int,
    data: PaymentUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Edit a manual payment; the installment balance is re-derived"""
    try:
        payment = payment_ledger.edit_payment(db, tenant.id, payment_id, data.model_dump(exclude_unset=True))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(payment)
    return serialize_payment(payment)


@router.delete("/{payment_id}")
def delete_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    try:
        payment_ledger.delete_payment(db, tenant.id, payment_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"success": True}
