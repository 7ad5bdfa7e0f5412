import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from clinic.core.database import get_db
from clinic.core.deps import get_message_channel, get_tenant
from clinic.core.serializers import serialize_reminder
from clinic.models.tenant import Tenant
from clinic.services import notification_dispatcher, reminder_scheduler
from clinic.services.notification_dispatcher import MessageChannel

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate")
def generate_reminders(db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    """Generate reminder schedules for every unpaid installment that has none"""
    report = reminder_scheduler.generate_pending(db, tenant_id=tenant.id)
    db.commit()
    logger.info(
        "reminder generation: %s created for %s installments, %s errors",
        report.created, report.installments, len(report.errors),
    )

    if report.errors:
        return JSONResponse(
            status_code=207,
            content={
                "success": False,
                "error": f"Errores durante el procesamiento: {', '.join(report.errors)}",
                "created": report.created,
                "errors": report.errors,
            },
        )
    return {
        "success": True,
        "message": f"Se crearon {report.created} recordatorios para {report.installments} cuotas",
        "created": report.created,
        "errors": [],
    }


@router.get("/stats")
def get_stats(db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    return {"success": True, "stats": reminder_scheduler.reminder_stats(db, tenant_id=tenant.id)}


@router.get("/due")
def list_due(
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    reminders = reminder_scheduler.sweep_due(db, as_of or date.today(), tenant_id=tenant.id)
    return [serialize_reminder(r) for r in reminders]


@router.post("/dispatch")
def dispatch(
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    channel: MessageChannel = Depends(get_message_channel),
):
    """Send due reminders through the messaging channel"""
    report = notification_dispatcher.dispatch_due(db, channel, as_of=as_of, tenant_id=tenant.id)
    return {"success": True, "sent": report.sent, "failed": report.failed, "skipped": report.skipped}


@router.post("/{reminder_id}/retry")
def retry(reminder_id: int, db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    """Manual retry of a failed reminder"""
    reminder = reminder_scheduler.retry_reminder(db, reminder_id, tenant_id=tenant.id)
    db.commit()
    return serialize_reminder(reminder)
