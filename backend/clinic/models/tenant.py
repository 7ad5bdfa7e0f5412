"""
Consultorio (tenant). Es dueño de los pacientes y de las credenciales de la
pasarela; todo lo demás se resuelve a un tenant siguiendo
cuota -> plan -> tratamiento -> paciente.
"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

# Base compartida por todos los modelos de clinic.models
Base = declarative_base()


class Tenant(Base):
    __tablename__ = "tenants"
    __table_args__ = (UniqueConstraint("slug", name="uq_tenant_slug"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    # Header X-Tenant-ID o subdominio
    slug = Column(String(255), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    patients = relationship("Patient", back_populates="tenant")
    gateway_configs = relationship("GatewayConfig", back_populates="tenant", order_by="GatewayConfig.id")
