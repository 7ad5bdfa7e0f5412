from enum import Enum


class TreatmentStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class PlanStatus(str, Enum):
    active = "active"
    completed = "completed"


class InstallmentState(str, Enum):
    pending = "pending"
    paid = "paid"
    overdue = "overdue"


class PaymentMethod(str, Enum):
    cash = "cash"
    bank_transfer = "bank_transfer"
    gateway_pay = "gateway_pay"
    credit_card = "credit_card"
    debit_card = "debit_card"
    other = "other"

    @classmethod
    def _missing_(cls, value):
        # Valores desconocidos (o legacy) caen en "other"
        return cls.other


class PaymentBucket(str, Enum):
    cash = "cash"
    bank_transfer = "bank_transfer"
    other = "other"


BUCKET_BY_METHOD = {
    PaymentMethod.cash: PaymentBucket.cash,
    PaymentMethod.bank_transfer: PaymentBucket.bank_transfer,
    PaymentMethod.gateway_pay: PaymentBucket.bank_transfer,
}


def bucket_for(method) -> PaymentBucket:
    return BUCKET_BY_METHOD.get(PaymentMethod(method), PaymentBucket.other)


class ReminderKind(str, Enum):
    days_before_7 = "days_before_7"
    days_before_3 = "days_before_3"
    days_before_1 = "days_before_1"
    due = "due"
    overdue = "overdue"


# Desplazamiento en dias respecto del vencimiento, en orden de envio
REMINDER_OFFSETS = {
    ReminderKind.days_before_7: -7,
    ReminderKind.days_before_3: -3,
    ReminderKind.days_before_1: -1,
    ReminderKind.due: 0,
    ReminderKind.overdue: 1,
}


class ReminderState(str, Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"


class GatewayStatus(str, Enum):
    created = "created"
    approved = "approved"
