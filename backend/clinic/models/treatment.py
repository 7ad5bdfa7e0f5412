from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from clinic.core.enums import TreatmentStatus
from clinic.models.tenant import Base


class Treatment(Base):
    __tablename__ = "treatments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    total_cost = Column(Numeric(12, 2), nullable=False, default=0)
    # pending | in_progress | completed | cancelled
    status = Column(String(20), nullable=False, default=TreatmentStatus.pending.value)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    patient = relationship("Patient")
    plans = relationship("PaymentPlan", back_populates="treatment")
