"""
MedGuard - Medical RBAC, break-glass override and audit API.
Decides whether a caller may touch protected health information and records every decision.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import audit, emergency, patients
from .core.config import settings
from .core.exceptions import MedicalAccessError
from .core.principal import TrustedHeaderPrincipalMiddleware
from .models import audit_log, emergency_override  # noqa: F401 - register tables
from .models.base import Base, engine

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# NOTE: In production, use Alembic migrations instead of create_all()
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="MedGuard Access Control API",
    description=(
        "Role, department and specialty based access decisions for PHI, "
        "time-boxed break-glass overrides with mandatory review, "
        "and an append-only audit trail of every decision."
    ),
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

if settings.TRUST_GATEWAY_HEADERS:
    app.add_middleware(TrustedHeaderPrincipalMiddleware)


@app.exception_handler(MedicalAccessError)
async def medical_access_error_handler(request: Request, exc: MedicalAccessError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "resource": exc.resource, "patient_id": exc.patient_id},
        headers=headers,
    )


app.include_router(emergency.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}
