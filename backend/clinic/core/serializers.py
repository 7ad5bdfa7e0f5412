"""
Serialización JSON de las entidades de cobranza.
Montos como float, fechas en ISO 8601.
"""
from clinic.models.payment import Payment
from clinic.models.payment_plan import Installment, PaymentPlan
from clinic.models.reminder import Reminder
from clinic.services.installment_service import get_balance


def money(value):
    if value is None:
        return None
    return float(value)


def iso(value):
    if value is None:
        return None
    return value.isoformat()


def serialize_installment(i: Installment) -> dict:
    return {
        "id": i.id,
        "plan_id": i.plan_id,
        "number": i.number,
        "amount": money(i.amount),
        "due_date": iso(i.due_date),
        "state": i.state,
        "total_paid": money(i.total_paid or 0),
        "balance": money(get_balance(i)),
        "paid_date": iso(i.paid_date),
        "gateway_preference_id": i.gateway_preference_id,
        "gateway_payment_id": i.gateway_payment_id,
    }


def serialize_plan(plan: PaymentPlan) -> dict:
    return {
        "id": plan.id,
        "treatment_id": plan.treatment_id,
        "name": plan.name,
        "total_amount": money(plan.total_amount),
        "installment_count": plan.installment_count,
        "status": plan.status,
        "installments": [serialize_installment(i) for i in plan.installments],
    }


def serialize_payment(p: Payment) -> dict:
    return {
        "id": p.id,
        "patient_id": p.patient_id,
        "installment_id": p.installment_id,
        "amount": money(p.amount),
        "method": p.method,
        "concept": p.concept,
        "note": p.note,
        "payment_date": iso(p.payment_date),
        "gateway_payment_id": p.gateway_payment_id,
        "created_at": iso(p.created_at),
    }


def serialize_reminder(r: Reminder) -> dict:
    return {
        "id": r.id,
        "installment_id": r.installment_id,
        "kind": r.kind,
        "scheduled_date": iso(r.scheduled_date),
        "state": r.state,
        "message": r.message,
        "sent_at": iso(r.sent_at),
        "error": r.error,
    }
