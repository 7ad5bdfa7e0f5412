import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinic.core.database import get_db
from clinic.core.deps import get_gateway_factory, get_tenant
from clinic.core.errors import GatewayError, ValidationError
from clinic.models.tenant import Tenant
from clinic.services import gateway_reconciler
from clinic.services.gateway_reconciler import GatewayFactory, WebhookOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


class PreferenceCreate(BaseModel):
    installment_id: Optional[int] = Field(None, alias="installmentId")
    amount: Optional[Decimal] = None
    concept: Optional[str] = None
    payer_email: Optional[str] = Field(None, alias="payerEmail")
    payer_name: Optional[str] = Field(None, alias="payerName")
    tenant_id: Optional[int] = Field(None, alias="tenantId")

    class Config:
        populate_by_name = True


class CredentialsTest(BaseModel):
    access_token: Optional[str] = None


class GatewayConfigUpdate(BaseModel):
    access_token: str
    is_sandbox: bool = True


@router.post("/preference")
def create_preference(
    data: PreferenceCreate,
    db: Session = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
):
    """Create a checkout preference for an installment"""
    if not data.installment_id or not data.amount or not data.tenant_id:
        raise ValidationError("Datos incompletos")

    try:
        result = gateway_reconciler.create_preference(
            db,
            gateway_factory,
            tenant_id=data.tenant_id,
            installment_id=data.installment_id,
            amount=data.amount,
            concept=data.concept,
            payer_email=data.payer_email,
            payer_name=data.payer_name,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    return {
        "success": True,
        "preferenceId": result["preference_id"],
        "checkoutUrl": result["checkout_url"],
        "sandbox": result["sandbox"],
    }


@router.post("/webhook")
def gateway_webhook(
    payload: Optional[Dict[str, Any]] = Body(None),
    db: Session = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
):
    """
    Gateway notification endpoint.

    Always acknowledges with 200 unless the envelope is malformed, so the
    gateway does not retry forever on internal errors; outcomes go to the log.
    """
    logger.info("webhook received: %s", payload)
    try:
        outcome = gateway_reconciler.handle_webhook(db, gateway_factory, payload)
    except ValidationError:
        raise
    except Exception:
        db.rollback()
        logger.exception("unexpected error processing webhook")
        outcome = WebhookOutcome.failed
    return {"success": True, "outcome": outcome.value}


@router.post("/credentials-test")
def credentials_test(
    data: CredentialsTest,
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
):
    """Check an access token against the gateway identity endpoint"""
    if not data.access_token:
        raise ValidationError("Access token requerido")
    try:
        user_info = gateway_reconciler.verify_credentials(gateway_factory, data.access_token)
    except GatewayError as e:
        logger.info("credentials test failed: %s", e.message)
        raise ValidationError("Credenciales inválidas")
    return {
        "success": True,
        "message": "Conexión exitosa con MercadoPago",
        "user_info": user_info,
    }


@router.put("/config")
def update_config(
    data: GatewayConfigUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    """Store new gateway credentials for the tenant (previous ones are deactivated)"""
    try:
        config = gateway_reconciler.upsert_gateway_config(db, tenant.id, data.access_token, data.is_sandbox)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"success": True, "id": config.id, "sandbox": config.is_sandbox}
