"""
Gate Permit Validation API

Application entry point: builds the gate pipeline (authority client,
reconciliation engine, audit log, event notifier, forwarder) at startup
and serves it under /api.

Run with: uvicorn server:app --host 0.0.0.0 --port 8001
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
import time
import traceback
import uuid

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

# .env must be loaded before settings are first read
load_dotenv(Path(__file__).parent / ".env")

from config import get_cors_config, get_settings, validate_environment
from gate.clients.soap_authority import SoapAuthorityClient
from gate.endpoints.gate_api import router as gate_router
from gate.engine import ReconciliationEngine
from gate.policy_registry import policy_registry
from gate.services.validation_service import GateValidationService
from logging_config import clear_request_context, get_logger, set_request_context, setup_logging
from sentry_integration import init_sentry, set_tag
from services.audit import JsonlAuditLog
from services.event_notifier import EventNotifier
from services.forwarding import ForwardingClient
from utils.validation_errors import VALIDATION_STATUS_CODE, build_request_validation_error

settings = get_settings()

setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="gate-validator"
)
logger = get_logger(__name__)

init_sentry(
    dsn=settings.SENTRY_DSN,
    environment=settings.ENVIRONMENT,
    release=settings.API_VERSION,
)


def build_gate_service() -> GateValidationService:
    """Wire the gate pipeline from settings."""
    audit_log = JsonlAuditLog(settings.GATE_LOG_DIR)
    engine = ReconciliationEngine(
        authority=SoapAuthorityClient.from_settings(settings),
        policy=policy_registry.get(settings.GATE_POLICY_VERSION)
    )
    return GateValidationService(
        engine=engine,
        audit_log=audit_log,
        notifier=EventNotifier(),
        forwarder=ForwardingClient.from_settings(settings, audit_log)
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    env_status = validate_environment()
    for warning in env_status["warnings"]:
        logger.warning(f"Config: {warning}")
    for error in env_status["errors"]:
        logger.error(f"Config: {error}")
    if env_status["errors"] and settings.is_production:
        raise RuntimeError(f"Refusing to start with invalid configuration: {env_status['errors']}")

    service = build_gate_service()
    app.state.gate_service = service
    set_tag("gate_policy", service.policy.version)

    logger.info(
        f"Gate validator up: env={settings.ENVIRONMENT} policy={service.policy.version} "
        f"authority={settings.AUTHORITY_URL} forward={settings.FORWARD_URL or 'disabled'} "
        f"audit={settings.GATE_LOG_DIR}"
    )

    yield

    logger.info(f"Gate validator stopping ({service.notifier.subscriber_count} dashboard socket(s) open)")


app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description="Validates cargo terminal gate transactions against the permit authority.",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

api_router = APIRouter(prefix="/api")


# ==================== HEALTH ====================

def _gate_service(request: Request):
    return getattr(request.app.state, "gate_service", None)


def _audit_writable(service) -> bool:
    if service is None:
        return False
    check = getattr(service.audit_log, "is_writable", None)
    return check() if check else True


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@api_router.get("/", tags=["Health"])
async def root():
    return {
        "service": settings.API_TITLE,
        "version": settings.API_VERSION,
        "status": "healthy",
    }


@api_router.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Pipeline health for load balancers.

    503 when the audit log cannot be written, since no transaction can be
    recorded without it.
    """
    service = _gate_service(request)
    env_status = validate_environment()
    writable = _audit_writable(service)

    body = {
        "status": "healthy" if writable else "unhealthy",
        "timestamp": _now(),
        "version": settings.API_VERSION,
        "checks": {
            "audit_log": {"status": "writable" if writable else "unavailable"},
            "policy": {"version": service.policy.version if service else None},
            "forwarding": {"configured": bool(settings.FORWARD_URL)},
            "dashboards": {"subscribers": service.notifier.subscriber_count if service else 0},
            "configuration": {
                "status": "valid" if env_status["valid"] else "invalid",
                "errors": len(env_status["errors"]),
                "warnings": len(env_status["warnings"]),
            },
        },
    }
    return JSONResponse(status_code=200 if writable else 503, content=body)


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """Process is up; dependencies are not checked."""
    return {"status": "alive", "timestamp": _now()}


@api_router.get("/health/ready", tags=["Health"])
async def readiness_check(request: Request):
    """Ready once the pipeline is wired and the audit log accepts writes."""
    if not _audit_writable(_gate_service(request)):
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "error": "audit log unavailable", "timestamp": _now()}
        )
    return {"status": "ready", "timestamp": _now()}


@api_router.get("/config/status", tags=["Health"])
async def config_status():
    """Non-sensitive view of the active configuration."""
    env_status = validate_environment()
    return {
        "environment": settings.ENVIRONMENT,
        "debug": settings.debug_enabled,
        "configuration_valid": env_status["valid"],
        "variables": env_status["variables"],
        "warnings": env_status["warnings"],
        "errors": ["Hidden in production"] if settings.is_production else env_status["errors"],
    }


api_router.include_router(gate_router)
app.include_router(api_router)


# ==================== MIDDLEWARE ====================

app.add_middleware(CORSMiddleware, **get_cors_config())


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Propagate X-Request-ID and log slow or failed requests."""
    request_id = request.headers.get("X-Request-ID") or f"gate-{uuid.uuid4().hex[:12]}"
    set_request_context(request_id)
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} failed: {e}")
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        clear_request_context()

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)

    if response.status_code >= 400 or settings.debug_enabled:
        logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)")

    return response


# ==================== ERROR HANDLERS ====================

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies get 400; 422 is reserved for expired permits."""
    return JSONResponse(
        status_code=VALIDATION_STATUS_CODE,
        content=build_request_validation_error(list(exc.errors()))
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}")
    if settings.debug_enabled:
        logger.error(traceback.format_exc())

    if settings.is_production:
        content = {"success": False, "error": "Internal server error"}
    else:
        content = {"success": False, "error": str(exc), "type": type(exc).__name__}
    return JSONResponse(status_code=500, content=content)
