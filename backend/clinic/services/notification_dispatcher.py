"""
Envío de recordatorios vencidos por un canal de mensajería externo (WhatsApp).

Cada recordatorio pasa de pending a sent o failed una sola vez: la
transición es un UPDATE condicionado a `state = 'pending'`, así dos
despachos concurrentes no pueden marcar el mismo id dos veces.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from clinic.core.enums import InstallmentState, ReminderState
from clinic.models.reminder import Reminder
from clinic.services import installment_service
from clinic.services.reminder_scheduler import sweep_due

logger = logging.getLogger(__name__)


class MessageChannel(Protocol):
    def send(self, phone: str, message: str) -> None:
        ...


class LogChannel:
    """Canal simulado: registra el mensaje sin enviarlo."""

    def send(self, phone: str, message: str) -> None:
        logger.info("whatsapp to %s: %s", phone, message)


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


def _transition(db: Session, reminder_id: int, state: ReminderState, error: Optional[str] = None) -> bool:
    values = {Reminder.state: state.value, Reminder.error: error}
    if state == ReminderState.sent:
        values[Reminder.sent_at] = datetime.now(timezone.utc)
    updated = db.query(Reminder).filter(
        Reminder.id == reminder_id,
        Reminder.state == ReminderState.pending.value,
    ).update(values, synchronize_session="fetch")
    return updated == 1


def dispatch_due(
    db: Session,
    channel: MessageChannel,
    as_of: Optional[date] = None,
    tenant_id: Optional[int] = None,
) -> DispatchReport:
    """
    Envía los recordatorios pendientes con fecha <= as_of.

    Los de cuotas ya pagadas se dejan intactos y cuentan como skipped.
    Hace commit después de cada recordatorio para que un fallo posterior no
    deshaga un envío ya realizado.
    """
    report = DispatchReport()
    for reminder in sweep_due(db, as_of or date.today(), tenant_id=tenant_id):
        reminder_id = reminder.id
        installment = reminder.installment
        if installment.state == InstallmentState.paid.value:
            report.skipped += 1
            continue

        patient = installment_service.get_patient(db, installment)
        phone = patient.phone if patient else None
        if not phone:
            state, error = ReminderState.failed, "Paciente sin teléfono"
        else:
            try:
                channel.send(phone, reminder.message)
                state, error = ReminderState.sent, None
            except Exception as e:
                logger.exception("error sending reminder %s", reminder_id)
                state, error = ReminderState.failed, str(e)[:500]

        if _transition(db, reminder_id, state, error):
            db.commit()
            if state == ReminderState.sent:
                report.sent += 1
            else:
                report.failed += 1
        else:
            db.rollback()
            logger.info("reminder %s already dispatched elsewhere", reminder_id)
    return report
