from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from clinic.models.tenant import Base


class GatewayConfig(Base):
    __tablename__ = "gateway_configs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    access_token = Column(String(500), nullable=False)
    is_sandbox = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    tenant = relationship("Tenant", back_populates="gateway_configs")


class GatewayTransaction(Base):
    """Auditoria de eventos de la pasarela. Solo insercion."""

    __tablename__ = "gateway_transactions"
    __table_args__ = (
        # Clave de idempotencia del webhook
        UniqueConstraint("installment_id", "payment_id", name="uq_gateway_tx_installment_payment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_id = Column(Integer, ForeignKey("installments.id"), nullable=False, index=True)
    preference_id = Column(String(255), nullable=True)
    payment_id = Column(String(255), nullable=True, index=True)
    status = Column(String(50), nullable=False)
    amount = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String(50), nullable=True)
    raw_payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
