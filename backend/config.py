"""
Gate Validator - Configuration

All runtime settings come from the environment (or backend/.env):
- Permit authority endpoint, SOAPAction and timeout
- Forwarding sink, timeout and signing secret
- Active gate policy version and audit log directory
- CORS, logging and Sentry

Every outbound call the service makes has its timeout configured here.
"""

from functools import lru_cache
from pathlib import Path
from typing import List
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gate.policy_registry import policy_registry

logger = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).parent

# Local dashboard origins allowed outside production
DASHBOARD_DEV_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


class Settings(BaseSettings):
    """Gate validator settings, validated and coerced by pydantic-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== RUNTIME ====================
    ENVIRONMENT: str = Field(default="development", description="development, staging or production")
    DEBUG: bool = Field(default=False, description="Verbose request logging and OpenAPI docs")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    SENTRY_DSN: str = Field(default="", description="Sentry DSN; empty disables error tracking")

    # ==================== PERMIT AUTHORITY ====================
    AUTHORITY_URL: str = Field(
        default="http://10.1.100.101:8001/soa-infra/services/default/GateWithEmptyTrailer/emptytrailerbpel_client_ep",
        description="EmptyTrailer SOAP endpoint"
    )
    AUTHORITY_SOAP_ACTION: str = Field(default="EmptyTrailer", description="SOAPAction header value")
    AUTHORITY_TIMEOUT_SECONDS: float = Field(default=15.0, description="Bound on one authority lookup")

    # ==================== FORWARDING ====================
    FORWARD_URL: str = Field(
        default="http://localhost:6000/dummy-receiver",
        description="Sink for matched decisions; empty disables forwarding"
    )
    FORWARD_TIMEOUT_SECONDS: float = Field(default=5.0, description="Bound on one forwarding attempt")
    FORWARD_SECRET: str = Field(default="", description="HMAC-SHA256 key for X-Gate-Signature")

    # ==================== GATE ====================
    GATE_POLICY_VERSION: str = Field(default="v1", description="Field-check policy of this deployment")
    GATE_LOG_DIR: str = Field(default=str(BACKEND_DIR / "logs"), description="Audit history directory")

    # ==================== API ====================
    API_TITLE: str = Field(default="Gate Permit Validation API")
    API_VERSION: str = Field(default="1.0.0")
    CORS_ORIGINS: str = Field(default="", description="Comma-separated dashboard origins")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        return self.DEBUG or self.is_development

    @property
    def cors_origins_list(self) -> List[str]:
        """Configured origins, plus the local dashboard outside production."""
        origins = {o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip() and o.strip() != "*"}
        if not self.is_production:
            origins.update(DASHBOARD_DEV_ORIGINS)
        return sorted(origins)

    def validate_config(self) -> List[str]:
        """Problems that make the deployment unusable."""
        errors = []

        if not self.AUTHORITY_URL:
            errors.append("AUTHORITY_URL is required")
        if self.AUTHORITY_TIMEOUT_SECONDS <= 0:
            errors.append("AUTHORITY_TIMEOUT_SECONDS must be positive")
        if self.FORWARD_TIMEOUT_SECONDS <= 0:
            errors.append("FORWARD_TIMEOUT_SECONDS must be positive")
        if not policy_registry.is_registered(self.GATE_POLICY_VERSION):
            errors.append(
                f"GATE_POLICY_VERSION '{self.GATE_POLICY_VERSION}' is unknown. "
                f"Valid versions: {policy_registry.versions()}"
            )

        if self.is_production:
            if self.CORS_ORIGINS.strip() == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")
            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors

    def config_warnings(self) -> List[str]:
        """Optional features that are switched off."""
        warnings = []
        if not self.FORWARD_URL:
            warnings.append("FORWARD_URL not set: matched decisions are recorded as forward errors")
        elif not self.FORWARD_SECRET:
            warnings.append("FORWARD_SECRET not set: forwarded payloads are unsigned")
        if not self.SENTRY_DSN:
            warnings.append("SENTRY_DSN not set: error tracking disabled")
        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once per process."""
    settings = Settings()
    logger.info(f"Loaded settings: env={settings.ENVIRONMENT} policy={settings.GATE_POLICY_VERSION}")
    return settings


def get_cors_config() -> dict:
    """Keyword arguments for CORSMiddleware."""
    return {
        "allow_origins": get_settings().cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Content-Type", "Accept", "Origin", "X-Request-ID"],
        "expose_headers": ["X-Request-ID", "X-Process-Time"],
        "max_age": 600,
    }


def validate_environment() -> dict:
    """
    Startup and /api/config/status view of the configuration.

    Returns:
        {"valid", "environment", "errors", "warnings", "variables"} where
        variables shows which settings are present, never their values
        (except the policy version).
    """
    settings = get_settings()
    errors = settings.validate_config()

    return {
        "valid": not errors,
        "environment": settings.ENVIRONMENT,
        "errors": errors,
        "warnings": settings.config_warnings(),
        "variables": {
            "AUTHORITY_URL": "set" if settings.AUTHORITY_URL else "missing",
            "FORWARD_URL": "set" if settings.FORWARD_URL else "not set",
            "FORWARD_SECRET": "set" if settings.FORWARD_SECRET else "not set",
            "SENTRY_DSN": "set" if settings.SENTRY_DSN else "not set",
            "GATE_POLICY_VERSION": settings.GATE_POLICY_VERSION,
        },
    }
