from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Date, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from clinic.core.enums import ReminderState
from clinic.models.tenant import Base


class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        UniqueConstraint("installment_id", "kind", name="uq_reminders_installment_kind"),
    )

    id = Column(Integer, primary_key=True, index=True)
    installment_id = Column(Integer, ForeignKey("installments.id", ondelete="CASCADE"), nullable=False, index=True)
    # days_before_7 | days_before_3 | days_before_1 | due | overdue
    kind = Column(String(20), nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    # pending | sent | failed
    state = Column(String(20), nullable=False, default=ReminderState.pending.value, index=True)
    message = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    installment = relationship("Installment")
