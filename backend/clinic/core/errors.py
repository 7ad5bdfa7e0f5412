"""
Errores de negocio del modulo de cobranza.

Los servicios lanzan estas excepciones; la aplicacion las traduce a una
respuesta `{"success": false, "error": ...}` con el status HTTP indicado.
"""


class BillingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError):
    """Entrada invalida: monto no positivo, plan vacio, campo faltante."""

    status_code = 400


class ConfigurationError(BillingError):
    """El tenant no tiene credenciales activas de la pasarela."""

    status_code = 400


class OverpaymentError(BillingError):
    """El pago dejaria total_paid por encima del monto de la cuota."""

    status_code = 400


class NotFoundError(BillingError):
    status_code = 404


class GatewayError(BillingError):
    """Timeout, error de red o respuesta no-2xx de la pasarela."""

    status_code = 502
