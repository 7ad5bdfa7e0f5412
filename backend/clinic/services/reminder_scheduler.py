"""
Programación de recordatorios de cuotas.

Por cada cuota se generan cinco recordatorios (7, 3 y 1 día antes, el día
del vencimiento y el día posterior). La generación es idempotente por
cuota: si ya existe cualquier recordatorio, no se crea nada.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic.core.enums import InstallmentState, REMINDER_OFFSETS, ReminderKind, ReminderState
from clinic.core.errors import NotFoundError
from clinic.models.patient import Patient
from clinic.models.payment_plan import Installment, PaymentPlan
from clinic.models.reminder import Reminder
from clinic.models.treatment import Treatment
from clinic.services import installment_service

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATES = {
    ReminderKind.days_before_7: "Su cuota N° {number} de ${amount} vence en 7 días ({due_date}).",
    ReminderKind.days_before_3: "Su cuota N° {number} de ${amount} vence en 3 días ({due_date}).",
    ReminderKind.days_before_1: "Su cuota N° {number} de ${amount} vence mañana.",
    ReminderKind.due: "Su cuota N° {number} de ${amount} vence hoy.",
    ReminderKind.overdue: "Su cuota N° {number} de ${amount} está vencida desde el {due_date}.",
}


@dataclass
class GenerationReport:
    created: int = 0
    installments: int = 0
    errors: List[str] = field(default_factory=list)


def build_schedule(installment: Installment, due_date: date) -> List[Reminder]:
    """Arma (sin persistir) los cinco recordatorios de la cuota."""
    context = {
        "number": installment.number,
        "amount": f"{installment.amount:,.2f}",
        "due_date": due_date.strftime("%d/%m/%Y"),
    }
    return [
        Reminder(
            installment_id=installment.id,
            kind=kind.value,
            scheduled_date=due_date + timedelta(days=offset),
            state=ReminderState.pending.value,
            message=MESSAGE_TEMPLATES[kind].format(**context),
        )
        for kind, offset in REMINDER_OFFSETS.items()
    ]


def _tenant_scoped(query, tenant_id: int):
    return (
        query.join(Installment, Reminder.installment_id == Installment.id)
        .join(PaymentPlan, Installment.plan_id == PaymentPlan.id)
        .join(Treatment, PaymentPlan.treatment_id == Treatment.id)
        .join(Patient, Treatment.patient_id == Patient.id)
        .filter(Patient.tenant_id == tenant_id)
    )


def has_reminders(db: Session, installment_id: int) -> bool:
    return db.query(Reminder.id).filter(Reminder.installment_id == installment_id).first() is not None


def generate_for_installment(db: Session, installment_id: int, due_date: Optional[date] = None) -> List[Reminder]:
    """
    Genera los recordatorios de una cuota. Devuelve [] si ya tenía alguno.

    Las cinco filas se insertan dentro de un SAVEPOINT: si falla una, no
    queda ninguna. La unique (installment_id, kind) resuelve la carrera
    entre dos generaciones concurrentes.
    """
    installment = installment_service.get_installment(db, installment_id)
    if has_reminders(db, installment_id):
        return []

    reminders = build_schedule(installment, due_date or installment.due_date)
    try:
        with db.begin_nested():
            db.add_all(reminders)
    except IntegrityError:
        logger.info("reminders for installment %s created concurrently, skipping", installment_id)
        return []
    return reminders


def generate_pending(db: Session, tenant_id: Optional[int] = None) -> GenerationReport:
    """
    Recorre las cuotas no pagadas sin recordatorios y genera su calendario.
    Un error en una cuota no afecta a las demás; se informa en `errors`.
    """
    report = GenerationReport()
    query = db.query(Installment).filter(Installment.state != InstallmentState.paid.value)
    if tenant_id is not None:
        query = (
            query.join(PaymentPlan, Installment.plan_id == PaymentPlan.id)
            .join(Treatment, PaymentPlan.treatment_id == Treatment.id)
            .join(Patient, Treatment.patient_id == Patient.id)
            .filter(Patient.tenant_id == tenant_id)
        )
    installments = query.order_by(Installment.due_date, Installment.id).all()
    report.installments = len(installments)

    for installment in installments:
        try:
            created = generate_for_installment(db, installment.id, installment.due_date)
        except Exception as e:
            logger.exception("error generating reminders for installment %s", installment.id)
            report.errors.append(f"Cuota {installment.id}: {e.__class__.__name__}")
            continue
        report.created += len(created)
        if created:
            logger.info("created %s reminders for installment %s", len(created), installment.id)

    return report


def sweep_due(db: Session, as_of: date, tenant_id: Optional[int] = None) -> List[Reminder]:
    """Recordatorios pendientes con fecha programada <= as_of. Solo lectura."""
    query = db.query(Reminder).filter(
        Reminder.state == ReminderState.pending.value,
        Reminder.scheduled_date <= as_of,
    )
    if tenant_id is not None:
        query = _tenant_scoped(query, tenant_id)
    return query.order_by(Reminder.scheduled_date, Reminder.id).all()


def reminder_stats(db: Session, tenant_id: Optional[int] = None) -> Dict[str, int]:
    query = db.query(Reminder.state, func.count(Reminder.id))
    if tenant_id is not None:
        query = _tenant_scoped(query, tenant_id)
    rows = query.group_by(Reminder.state).all()
    counts = {state: count for state, count in rows}
    return {
        "total": sum(counts.values()),
        "sent": counts.get(ReminderState.sent.value, 0),
        "pending": counts.get(ReminderState.pending.value, 0),
        "failed": counts.get(ReminderState.failed.value, 0),
    }


def retry_reminder(db: Session, reminder_id: int, tenant_id: Optional[int] = None) -> Reminder:
    """Reintento manual: failed -> pending."""
    query = db.query(Reminder).filter(Reminder.id == reminder_id)
    if tenant_id is not None:
        query = _tenant_scoped(query, tenant_id)
    reminder = query.first()
    if not reminder:
        raise NotFoundError(f"Recordatorio {reminder_id} no encontrado")
    if reminder.state == ReminderState.failed.value:
        reminder.state = ReminderState.pending.value
        reminder.error = None
        db.flush()
    return reminder
