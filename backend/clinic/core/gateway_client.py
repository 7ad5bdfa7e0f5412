"""
Cliente HTTP minimo para la pasarela de pagos (API estilo MercadoPago).

Solo cubre lo que usa la conciliacion: crear preferencias, consultar un
pago y verificar credenciales. Todos los errores de red, timeouts y
respuestas no-2xx se convierten en GatewayError.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from clinic.core.config import settings
from clinic.core.errors import GatewayError

logger = logging.getLogger(__name__)


class GatewayClient:
    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.access_token = access_token
        self.base_url = (base_url or settings.gateway_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self.transport = transport

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.request(method, f"{self.base_url}{path}", json=json, headers=headers)
        except httpx.TimeoutException:
            raise GatewayError("Timeout conectando con la pasarela de pagos")
        except httpx.RequestError as e:
            raise GatewayError(f"Error de conexión con la pasarela: {e.__class__.__name__}")

        if r.status_code >= 400:
            logger.warning("gateway %s %s -> %s %s", method, path, r.status_code, r.text[:500])
            raise GatewayError(f"La pasarela respondió {r.status_code}")
        try:
            return r.json()
        except ValueError:
            raise GatewayError("Respuesta inválida de la pasarela")

    def create_preference(self, body: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", "/checkout/preferences", json=body)
        if not data.get("id"):
            raise GatewayError("La pasarela no devolvió un id de preferencia")
        return data

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/payments/{payment_id}")

    def get_account(self) -> Dict[str, Any]:
        return self._request("GET", "/users/me")
