from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "postgresql+psycopg2://clinicuser:clinicpass@db:5432/clinic"
    tenant_header: str = "X-Tenant-ID"
    backend_cors_origins: str = "http://localhost:5173"
    log_level: str = "INFO"

    # URL publica usada para armar back_urls y notification_url de la pasarela
    public_base_url: str = "http://localhost:8000"

    gateway_api_url: str = "https://api.mercadopago.com"
    gateway_timeout_seconds: float = 10.0
    gateway_currency: str = "ARS"
    preference_expiration_days: int = 30
    statement_descriptor: str = "CONSULTORIO DENTAL"

    # Railway specific - use PORT env var if available
    port: int = int(os.getenv("PORT", "8000"))

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        origins = self.backend_cors_origins
        return [origin.strip() for origin in origins.split(",") if origin.strip()]

    @property
    def webhook_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/payment-gateway/webhook"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
