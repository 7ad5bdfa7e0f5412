from datetime import datetime

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Date, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from clinic.core.enums import InstallmentState, PlanStatus
from clinic.models.tenant import Base


class PaymentPlan(Base):
    __tablename__ = "payment_plans"

    id = Column(Integer, primary_key=True, index=True)
    treatment_id = Column(Integer, ForeignKey("treatments.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    installment_count = Column(Integer, nullable=False, default=0)
    # active | completed (todas las cuotas pagadas)
    status = Column(String(20), nullable=False, default=PlanStatus.active.value)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    treatment = relationship("Treatment", back_populates="plans")
    installments = relationship(
        "Installment",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="Installment.number",
    )


class Installment(Base):
    """Cuota de un plan de pago."""

    __tablename__ = "installments"
    __table_args__ = (
        UniqueConstraint("plan_id", "number", name="uq_installments_plan_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("payment_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    # pending | paid | overdue
    state = Column(String(20), nullable=False, default=InstallmentState.pending.value, index=True)
    total_paid = Column(Numeric(12, 2), nullable=True, default=0)
    paid_date = Column(Date, nullable=True)
    gateway_preference_id = Column(String(255), nullable=True)
    gateway_payment_id = Column(String(255), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    plan = relationship("PaymentPlan", back_populates="installments")
