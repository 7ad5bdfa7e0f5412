"""
Conciliación con la pasarela de pagos.

Dos puntos de entrada:
- create_preference: arma el checkout de una cuota para el paciente.
- handle_webhook: procesa la notificación asincrónica de la pasarela y
  liquida la cuota exactamente una vez.

Los datos del webhook solo se usan para ubicar la cuota y el id de pago;
estado y monto se vuelven a consultar siempre a la pasarela.

A diferencia del resto de los servicios, handle_webhook hace commit: cada
notificación es una unidad de trabajo cerrada.
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.core.config import settings
from clinic.core.enums import GatewayStatus, InstallmentState
from clinic.core.errors import ConfigurationError, GatewayError, NotFoundError, ValidationError
from clinic.core.gateway_client import GatewayClient
from clinic.models.gateway import GatewayConfig, GatewayTransaction
from clinic.models.payment_plan import Installment
from clinic.services import installment_service, payment_ledger
from clinic.services.installment_service import to_money

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str], GatewayClient]

PAYMENT_EVENT_TYPES = {"payment"}


class WebhookOutcome(str, Enum):
    ignored = "ignored"
    not_found = "not_found"
    not_configured = "not_configured"
    mismatch = "mismatch"
    not_approved = "not_approved"
    duplicate = "duplicate"
    settled = "settled"
    failed = "failed"


def get_active_config(db: Session, tenant_id: int) -> GatewayConfig:
    config = db.query(GatewayConfig).filter(
        GatewayConfig.tenant_id == tenant_id,
        GatewayConfig.is_active == True,  # noqa: E712
    ).order_by(GatewayConfig.id.desc()).first()
    if not config or not config.access_token:
        raise ConfigurationError(
            "MercadoPago no configurado. Ve a Configuración para agregar tus credenciales."
        )
    return config


def upsert_gateway_config(db: Session, tenant_id: int, access_token: str, is_sandbox: bool) -> GatewayConfig:
    """Guarda nuevas credenciales y desactiva las anteriores del tenant."""
    token = (access_token or "").strip()
    if not token:
        raise ValidationError("Access token requerido")
    db.query(GatewayConfig).filter(
        GatewayConfig.tenant_id == tenant_id,
        GatewayConfig.is_active == True,  # noqa: E712
    ).update({GatewayConfig.is_active: False}, synchronize_session="fetch")
    config = GatewayConfig(tenant_id=tenant_id, access_token=token, is_sandbox=is_sandbox, is_active=True)
    db.add(config)
    db.flush()
    return config


def build_preference_body(
    installment: Installment,
    amount,
    concept: Optional[str],
    payer_email: Optional[str],
    payer_name: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    base_url = settings.public_base_url.rstrip("/")
    return {
        "items": [
            {
                "id": str(installment.id),
                "title": concept or "Cuota de tratamiento dental",
                "quantity": 1,
                "unit_price": float(to_money(amount)),
                "currency_id": settings.gateway_currency,
            }
        ],
        "payer": {
            "name": payer_name or "Paciente",
            "email": payer_email or "paciente@email.com",
        },
        "back_urls": {
            "success": f"{base_url}/pago/exito",
            "failure": f"{base_url}/pago/error",
            "pending": f"{base_url}/pago/pendiente",
        },
        "auto_return": "approved",
        "notification_url": settings.webhook_url,
        "external_reference": str(installment.id),
        "expires": True,
        "expiration_date_from": now.isoformat(),
        "expiration_date_to": (now + timedelta(days=settings.preference_expiration_days)).isoformat(),
        "statement_descriptor": settings.statement_descriptor,
    }


def create_preference(
    db: Session,
    gateway_factory: GatewayFactory,
    tenant_id: int,
    installment_id: int,
    amount,
    concept: Optional[str] = None,
    payer_email: Optional[str] = None,
    payer_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crea la preferencia de pago de una cuota.

    Si la pasarela falla la cuota no se modifica y el GatewayError sube al
    caller. NO hace commit.

    Raises:
        ConfigurationError: el tenant no tiene credenciales activas
        NotFoundError: la cuota no existe o es de otro tenant
        ValidationError: monto no positivo o cuota ya pagada
        GatewayError: la pasarela no respondió correctamente
    """
    config = get_active_config(db, tenant_id)

    if to_money(amount) <= 0:
        raise ValidationError("El monto debe ser positivo")

    installment = installment_service.get_installment(db, installment_id)
    if installment_service.resolve_tenant_id(db, installment) != tenant_id:
        raise NotFoundError(f"Cuota {installment_id} no encontrada")
    if installment.state == InstallmentState.paid.value:
        raise ValidationError(f"La cuota {installment.number} ya está pagada")

    body = build_preference_body(installment, amount, concept, payer_email, payer_name)
    client = gateway_factory(config.access_token)
    response = client.create_preference(body)

    preference_id = str(response["id"])
    installment.gateway_preference_id = preference_id
    db.add(GatewayTransaction(
        tenant_id=tenant_id,
        installment_id=installment.id,
        preference_id=preference_id,
        status=GatewayStatus.created.value,
        amount=to_money(amount),
    ))
    db.flush()

    checkout_url = response.get("sandbox_init_point") if config.is_sandbox else response.get("init_point")
    logger.info("preference %s created for installment %s (sandbox=%s)", preference_id, installment.id, config.is_sandbox)
    return {
        "preference_id": preference_id,
        "checkout_url": checkout_url,
        "sandbox": bool(config.is_sandbox),
    }


def verify_credentials(gateway_factory: GatewayFactory, access_token: str) -> Dict[str, Any]:
    """Verifica un access token contra el endpoint de identidad de la pasarela."""
    if not access_token:
        raise ValidationError("Access token requerido")
    account = gateway_factory(access_token).get_account()
    return {
        "id": account.get("id"),
        "nickname": account.get("nickname"),
        "country": account.get("site_id"),
    }


def parse_webhook(payload: Any) -> Dict[str, Optional[str]]:
    """
    Extrae tipo, id de pago y referencia externa del sobre del webhook.

    Raises:
        ValidationError: el sobre no tiene la forma mínima esperada
    """
    if not isinstance(payload, dict):
        raise ValidationError("Webhook inválido")
    event_type = payload.get("type") or payload.get("topic")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("Webhook inválido: data debe ser un objeto")
    payment_id = data.get("id")
    if event_type in PAYMENT_EVENT_TYPES and not payment_id:
        raise ValidationError("Payment ID no encontrado")
    reference = payload.get("external_reference")
    return {
        "type": event_type,
        "payment_id": str(payment_id) if payment_id else None,
        "external_reference": str(reference) if reference not in (None, "") else None,
    }


def _already_processed(db: Session, installment_id: int, payment_id: str) -> bool:
    return db.query(GatewayTransaction.id).filter(
        GatewayTransaction.installment_id == installment_id,
        GatewayTransaction.payment_id == payment_id,
    ).first() is not None


def _find_installment(db: Session, reference: Optional[str]) -> Optional[Installment]:
    if not reference:
        return None
    try:
        installment_id = int(reference)
    except ValueError:
        return None
    return db.query(Installment).filter(Installment.id == installment_id).first()


def handle_webhook(db: Session, gateway_factory: GatewayFactory, payload: Dict[str, Any]) -> WebhookOutcome:
    """
    Procesa una notificación de la pasarela.

    Nunca propaga errores internos: el resultado se loguea y se devuelve
    como WebhookOutcome para que el endpoint siempre responda 200. Solo un
    sobre mal formado lanza ValidationError.
    """
    event = parse_webhook(payload)
    if event["type"] not in PAYMENT_EVENT_TYPES:
        logger.debug("webhook type %s ignored", event["type"])
        return WebhookOutcome.ignored
    if not event["external_reference"]:
        logger.info("webhook for payment %s without external_reference, ignored", event["payment_id"])
        return WebhookOutcome.ignored

    payment_id = event["payment_id"]
    installment = _find_installment(db, event["external_reference"])
    if installment is None:
        logger.warning(
            "webhook payment %s references unknown installment %s",
            payment_id, event["external_reference"],
        )
        return WebhookOutcome.not_found

    tenant_id = installment_service.resolve_tenant_id(db, installment)
    if tenant_id is None:
        logger.warning("installment %s has no owning tenant, webhook for payment %s dropped", installment.id, payment_id)
        return WebhookOutcome.not_found

    try:
        config = get_active_config(db, tenant_id)
    except ConfigurationError:
        logger.warning("tenant %s has no active gateway config, webhook for payment %s dropped", tenant_id, payment_id)
        return WebhookOutcome.not_configured

    if _already_processed(db, installment.id, payment_id):
        logger.info("payment %s for installment %s already processed", payment_id, installment.id)
        return WebhookOutcome.duplicate

    try:
        payment_info = gateway_factory(config.access_token).get_payment(payment_id)
    except GatewayError as e:
        logger.error("could not fetch payment %s from gateway: %s", payment_id, e.message)
        return WebhookOutcome.failed

    fetched_reference = payment_info.get("external_reference")
    if fetched_reference not in (None, "") and str(fetched_reference) != str(installment.id):
        logger.warning(
            "payment %s belongs to reference %s, webhook said installment %s",
            payment_id, fetched_reference, installment.id,
        )
        return WebhookOutcome.mismatch

    status = payment_info.get("status")
    if status != GatewayStatus.approved.value:
        logger.info("payment %s for installment %s has status %s, nothing to settle", payment_id, installment.id, status)
        return WebhookOutcome.not_approved

    return _settle(db, installment, tenant_id, payment_id, payment_info, payload)


def _settle(
    db: Session,
    installment: Installment,
    tenant_id: int,
    payment_id: str,
    payment_info: Dict[str, Any],
    payload: Dict[str, Any],
) -> WebhookOutcome:
    installment_id = installment.id
    method = payment_info.get("payment_method_id")
    try:
        # La fila de auditoría es el "claim": la unique
        # (installment_id, payment_id) deja pasar una sola entrega.
        try:
            with db.begin_nested():
                db.add(GatewayTransaction(
                    tenant_id=tenant_id,
                    installment_id=installment_id,
                    preference_id=installment.gateway_preference_id,
                    payment_id=payment_id,
                    status=payment_info.get("status"),
                    amount=to_money(payment_info.get("transaction_amount")),
                    payment_method=method,
                    raw_payload=payload,
                ))
        except IntegrityError:
            db.rollback()
            logger.info("payment %s for installment %s claimed by a concurrent delivery", payment_id, installment_id)
            return WebhookOutcome.duplicate

        remaining = installment_service.get_balance(installment)
        installment = installment_service.mark_gateway_paid(db, installment_id, payment_id)
        installment.notes = f"Pago procesado por MercadoPago. ID: {payment_id}. Método: {method}"

        if remaining > 0:
            patient = installment_service.get_patient(db, installment)
            payment_ledger.record_gateway_payment(
                db,
                tenant_id=tenant_id,
                installment_id=installment_id,
                patient_id=patient.id if patient else None,
                amount=remaining,
                gateway_payment_id=payment_id,
                note=f"MercadoPago {method}" if method else None,
            )
        else:
            logger.warning("installment %s was already fully paid before gateway payment %s", installment_id, payment_id)

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("error settling installment %s with payment %s", installment_id, payment_id)
        return WebhookOutcome.failed

    logger.info("installment %s settled by gateway payment %s", installment_id, payment_id)
    return WebhookOutcome.settled
