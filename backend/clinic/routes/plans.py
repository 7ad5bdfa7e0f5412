from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinic.core.database import get_db
from clinic.core.deps import get_tenant
from clinic.core.errors import NotFoundError, ValidationError
from clinic.core.serializers import serialize_plan
from clinic.models.patient import Patient
from clinic.models.payment_plan import PaymentPlan
from clinic.models.tenant import Tenant
from clinic.models.treatment import Treatment
from clinic.services import installment_service

router = APIRouter()


class InstallmentIn(BaseModel):
    # Solo al editar: id de una cuota existente del plan
    id: Optional[int] = None
    amount: Decimal
    due_date: date


class PlanCreate(BaseModel):
    treatment_id: int
    name: Optional[str] = None
    installments: Optional[List[InstallmentIn]] = None
    # Alternativa: N cuotas iguales con vencimiento mensual
    installment_count: Optional[int] = None
    installment_amount: Optional[Decimal] = None
    first_due_date: Optional[date] = None


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    installments: List[InstallmentIn]


def _get_plan(db: Session, tenant: Tenant, plan_id: int) -> PaymentPlan:
    plan = (
        db.query(PaymentPlan)
        .join(Treatment, PaymentPlan.treatment_id == Treatment.id)
        .join(Patient, Treatment.patient_id == Patient.id)
        .filter(PaymentPlan.id == plan_id, Patient.tenant_id == tenant.id)
        .first()
    )
    if not plan:
        raise NotFoundError("Plan de pago no encontrado")
    return plan


@router.post("/")
def create_plan(
    data: PlanCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Create a payment plan for a treatment"""
    treatment = (
        db.query(Treatment)
        .join(Patient, Treatment.patient_id == Patient.id)
        .filter(Treatment.id == data.treatment_id, Patient.tenant_id == tenant.id)
        .first()
    )
    if not treatment:
        raise NotFoundError("Tratamiento no encontrado")

    if data.installments is not None:
        items = [item.model_dump() for item in data.installments]
    elif data.installment_count and data.installment_amount is not None and data.first_due_date:
        items = installment_service.build_monthly_schedule(
            data.installment_count, data.installment_amount, data.first_due_date
        )
    else:
        raise ValidationError("Indique las cuotas o la cantidad, monto y primer vencimiento")

    try:
        plan = installment_service.create_plan(db, treatment.id, items, name=data.name)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(plan)
    return serialize_plan(plan)


@router.get("/{plan_id}")
def get_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    return serialize_plan(_get_plan(db, tenant, plan_id))


@router.put("/{plan_id}")
def update_plan(
    plan_id: int,
    data: PlanUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Edit the installment schedule; paid or partly paid installments cannot be removed or changed"""
    plan = _get_plan(db, tenant, plan_id)
    try:
        plan = installment_service.update_plan(
            db, plan.id, [item.model_dump() for item in data.installments], name=data.name
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(plan)
    return serialize_plan(plan)
