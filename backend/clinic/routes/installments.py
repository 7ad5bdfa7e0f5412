from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinic.core.database import get_db
from clinic.core.deps import get_tenant
from clinic.core.errors import NotFoundError
from clinic.core.serializers import serialize_installment, serialize_reminder
from clinic.models.tenant import Tenant
from clinic.services import installment_service, reminder_scheduler

router = APIRouter()


@router.get("/")
def list_installments(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Installments due within a date range"""
    installments = installment_service.list_by_date_range(db, tenant.id, start, end)
    return [serialize_installment(i) for i in installments]


@router.get("/overdue")
def list_overdue(
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    installments = installment_service.list_overdue(db, as_of or date.today(), tenant_id=tenant.id)
    return [serialize_installment(i) for i in installments]


@router.post("/mark-overdue")
def mark_overdue(
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    updated = installment_service.mark_overdue(db, as_of or date.today(), tenant_id=tenant.id)
    db.commit()
    return {"success": True, "updated": updated}


@router.post("/{installment_id}/reminders")
def generate_installment_reminders(
    installment_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Generate the reminder schedule of one installment (no-op if it already has one)"""
    installment = installment_service.get_installment(db, installment_id)
    if installment_service.resolve_tenant_id(db, installment) != tenant.id:
        raise NotFoundError(f"Cuota {installment_id} no encontrada")
    try:
        reminders = reminder_scheduler.generate_for_installment(db, installment.id, installment.due_date)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"success": True, "created": len(reminders), "reminders": [serialize_reminder(r) for r in reminders]}
