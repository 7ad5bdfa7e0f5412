import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic.core.config import settings
from clinic.core.database import SessionLocal, init_db
from clinic.core.errors import BillingError
from clinic.routes.health import router as health_router
from clinic.routes.installments import router as installments_router
from clinic.routes.payment_gateway import router as payment_gateway_router
from clinic.routes.payments import router as payments_router
from clinic.routes.plans import router as plans_router
from clinic.routes.reminders import router as reminders_router
from clinic.services.seed import seed_demo

logger = logging.getLogger(__name__)


async def billing_error_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.__class__.__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed or incomplete bodies are a 400 with the same envelope as business errors."""
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Datos inválidos", "detail": jsonable_encoder(exc.errors())},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Error interno del servidor"})


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Clinic Billing API", version="0.1.0")

    origins = settings.cors_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, tags=["health"])
    app.include_router(plans_router, prefix="/plans", tags=["plans"])
    app.include_router(installments_router, prefix="/installments", tags=["installments"])
    app.include_router(payments_router, prefix="/payments", tags=["payments"])
    app.include_router(payment_gateway_router, prefix="/payment-gateway", tags=["payment-gateway"])
    app.include_router(reminders_router, prefix="/reminders", tags=["reminders"])

    return app


app = create_app()

# Only seed in development or when explicitly requested
if settings.env == "dev" or os.getenv("FORCE_SEED") == "true":
    try:
        init_db()
        with SessionLocal() as db:
            seed_demo(db)
    except Exception:
        logger.exception("demo seed failed")
