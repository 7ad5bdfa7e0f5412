from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from clinic.core.config import settings
from clinic.core.database import get_db
from clinic.core.gateway_client import GatewayClient
from clinic.models.tenant import Tenant
from clinic.services.gateway_reconciler import GatewayFactory
from clinic.services.notification_dispatcher import LogChannel, MessageChannel


def get_tenant_slug(request: Request) -> str:
    slug = request.headers.get(settings.tenant_header)
    if slug:
        return slug
    # Fallback: subdomain e.g., sonrisas.consultorio.com
    host = request.headers.get("host", "")
    parts = host.split(":")[0].split(".")
    if len(parts) >= 3:
        return parts[0]
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing tenant header")


def get_tenant(db: Session = Depends(get_db), tenant_slug: str = Depends(get_tenant_slug)) -> Tenant:
    tenant = db.query(Tenant).filter(
        Tenant.slug == tenant_slug,
        Tenant.is_active == True,  # noqa: E712
    ).first()
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


def get_gateway_factory() -> GatewayFactory:
    """Un cliente por access token: cada tenant usa sus propias credenciales."""
    return GatewayClient


def get_message_channel() -> MessageChannel:
    return LogChannel()
