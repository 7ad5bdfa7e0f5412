from .tenant import Tenant
from .patient import Patient
from .treatment import Treatment
from .payment_plan import PaymentPlan, Installment
from .payment import Payment
from .gateway import GatewayConfig, GatewayTransaction
from .reminder import Reminder

__all__ = [
    "Tenant",
    "Patient",
    "Treatment",
    "PaymentPlan",
    "Installment",
    "Payment",
    "GatewayConfig",
    "GatewayTransaction",
    "Reminder",
]
