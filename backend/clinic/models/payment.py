from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey

from clinic.models.tenant import Base


class Payment(Base):
    """Ingreso registrado: abono de una cuota o ingreso general."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="SET NULL"), nullable=True, index=True)
    # Si esta presente, el monto suma al total_paid de la cuota
    installment_id = Column(Integer, ForeignKey("installments.id"), nullable=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    # cash | bank_transfer | gateway_pay | credit_card | debit_card
    method = Column(String(30), nullable=False, default="cash")
    concept = Column(String(255), nullable=False, default="Pago de cuota")
    note = Column(String(500), nullable=True)
    payment_date = Column(Date, nullable=False, index=True)

    # Solo para pagos acreditados por la pasarela; esos pagos no se editan
    gateway_payment_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
