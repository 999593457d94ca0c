"""
BOLETA-SII — Main API Application
FastAPI backend for Chilean electronic boletas (DTE 39) of the clinic.

Complete flow (POST /api/boleta/demo):
  1. Validate SII configuration (emisor, certificate outside demo)
  2. Build the boleta and compute totals (IVA 19%)
  3. Serialize to SiiDte XML (ISO-8859-1)
  4. Sign (XML-DSig, or a demo marker in MODE=demo)
  5. Store as BORRADOR and upload to the SII
  6. Poll GET /api/boleta/status/{track_id} to reconcile the SII verdict

Architecture:
  - MODE picks the signing and submission backends once at startup
  - The .pfx is read once per process and kept only in memory
  - Nothing is retried internally; callers decide when to poll again
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from boleta_sii.core.config import settings, get_sii_url
from boleta_sii.core.exceptions import (
    BoletaError, ConfigurationError, NotFoundError, SigningError,
    SubmissionError, ValidationError,
)
from boleta_sii.dependencies import get_boleta_service
from boleta_sii.routers.boleta_router import create_boleta_router
from boleta_sii.schemas.models import ErrorResponse, HealthResponse

# ─────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("boleta-sii")


# ─────────────────────────────────────────────────────────────
# APP LIFECYCLE
# ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"BOLETA-SII v{settings.app_version} starting...")
    logger.info(f"   Mode: {settings.mode.value}")
    logger.info(f"   Environment: {settings.sii_environment.value}")
    logger.info(f"   SII Upload URL: {get_sii_url('upload')}")
    for problem in settings.validate_config():
        logger.warning(f"   Config: {problem}")
    yield
    logger.info("BOLETA-SII shutdown complete.")


# ─────────────────────────────────────────────────────────────
# FASTAPI APP
# ─────────────────────────────────────────────────────────────

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])

app = FastAPI(
    title="BOLETA-SII API",
    description=(
        "Backend API para boletas electrónicas (DTE 39) ante el "
        "Servicio de Impuestos Internos de Chile."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiter setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# ─────────────────────────────────────────────────────────────
# GLOBAL EXCEPTION HANDLERS
# ─────────────────────────────────────────────────────────────

def _error_json(exc: BoletaError, error: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=error, detail=exc.message, code=exc.code, **extra,
        ).model_dump(),
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_json(exc, "VALIDATION_ERROR", errores=exc.errors)


@app.exception_handler(ConfigurationError)
async def config_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc.message}")
    return _error_json(exc, "CONFIG_ERROR", errores=exc.errors or None)


@app.exception_handler(SigningError)
async def sign_error_handler(request: Request, exc: SigningError):
    return _error_json(exc, "SIGN_ERROR")


@app.exception_handler(SubmissionError)
async def submission_error_handler(request: Request, exc: SubmissionError):
    return _error_json(
        exc, "SUBMISSION_ERROR",
        codigo_rechazo=exc.codigo_rechazo,
        glosa_rechazo=exc.glosa_rechazo,
        track_id=exc.track_id,
        boleta_id=exc.boleta_id,
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_json(exc, "NOT_FOUND")


@app.exception_handler(BoletaError)
async def boleta_error_handler(request: Request, exc: BoletaError):
    logger.error(f"Boleta error {exc.code}: {exc.message}")
    return _error_json(exc, "BOLETA_ERROR")


# ═════════════════════════════════════════════════════════════
# ROUTES
# ═════════════════════════════════════════════════════════════

@app.get("/health", response_model=HealthResponse, tags=["Sistema"])
async def health_check():
    """Verificar estado del servicio."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "mode": settings.mode.value,
        "environment": settings.sii_environment.value,
        "sii_upload_url": get_sii_url("upload"),
    }


app.include_router(create_boleta_router(get_boleta_service=get_boleta_service))


# ENTRYPOINT
# ─────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "boleta_sii.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
