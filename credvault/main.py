"""Credential Vault - OAuth session manager and encrypted API key store."""

import logging
import os
import tomllib
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from credvault.api import api_router
from credvault.config import Settings
from credvault.exceptions import CredentialVaultError
from credvault.store import create_credential_store
from credvault.utils.encryption import EncryptionService
from credvault.utils.error_handling import vault_error_response
from credvault.utils.security import sanitize_log_message


def get_version() -> str:
    """Read version from pyproject.toml (single source of truth)."""
    try:
        # pyproject.toml sits in the project root, the parent of the package
        package_dir = Path(__file__).parent.resolve()
        pyproject_path = package_dir.parent / "pyproject.toml"

        if not pyproject_path.exists():
            logger.warning("pyproject.toml not found at %s", pyproject_path)
            return "0.0.0-dev"

        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except (FileNotFoundError, KeyError) as e:
        logger.warning("Could not read version from pyproject.toml: %s", e)
        return "0.0.0-dev"


# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Filter to exclude health check endpoints from access logs
class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from Granian access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if the log record is for an excluded endpoint."""
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


logging.getLogger("granian.access").addFilter(EndpointFilter(["/health"]))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: create the schema on startup, release the pool on shutdown."""
    logger.info("Starting Credential Vault...")

    await app.state.store.initialize_schema()
    logger.info("Credential store initialized")

    yield

    await app.state.store.close()
    logger.info("Shutting down Credential Vault...")


def create_app(
    settings: Optional[Settings] = None,
    store=None,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use (default: read from the environment)
        store: Credential store (default: built from ``settings.database_url``)
        provider_transport: httpx transport for identity provider calls
            (default: real network)

    Raises:
        ConfigurationError: If required configuration is missing. The
            process must not start in that case.
    """
    if settings is None:
        settings = Settings.from_env()
    if store is None:
        store = create_credential_store(settings.database_url)

    app = FastAPI(
        title="Credential Vault",
        description="OAuth session manager and encrypted API key store",
        version=get_version(),
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.encryption = EncryptionService(settings.encryption_key)
    app.state.provider_transport = provider_transport

    cors_origins = settings.cors_origins
    if cors_origins == ["*"]:
        logger.warning("⚠️  CORS configured with wildcard (*) - not recommended for production")
    else:
        logger.info("CORS origins: %s", cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        # Cannot use allow_credentials=True with allow_origins=["*"]
        allow_credentials=cors_origins != ["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Add security headers to all responses.

        Responses that set their own Content-Security-Policy (the OAuth
        popup page) keep it.
        """
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers.setdefault(
            "Content-Security-Policy",
            "default-src 'none'; frame-ancestors 'none'",
        )
        return response

    @app.exception_handler(CredentialVaultError)
    async def credential_vault_exception_handler(request: Request, exc: CredentialVaultError):
        """Map domain errors to structured JSON responses."""
        return vault_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report which fields were invalid without echoing submitted values.

        Request bodies can carry API keys and ID tokens.
        """
        errors = [
            {key: value for key, value in error.items() if key not in ("input", "ctx", "url")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={"error": "validation_error", "detail": jsonable_encoder(errors)},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Generic exception handler to prevent stack trace exposure.

        In debug mode (CREDVAULT_DEBUG=true), detailed errors are shown for
        development. Otherwise a generic message is returned. The full error
        is always logged.
        """
        logger.error(
            "Unhandled exception: %s: %s",
            type(exc).__name__,
            sanitize_log_message(str(exc)),
            exc_info=True,
            extra={
                "path": request.url.path,
                "method": request.method,
                "client": request.client.host if request.client else "unknown",
            },
        )

        if request.app.state.settings.debug:
            return JSONResponse(
                status_code=500,
                content={"error": "internal_error", "detail": str(exc), "type": type(exc).__name__, "debug": True},
            )

        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": "An internal error occurred."},
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "credvault"}

    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import subprocess
    import sys

    # Use same server as production (Granian) for consistency
    cmd = [
        "granian",
        "--interface",
        "asgi",
        "--host",
        "0.0.0.0",
        "--port",
        "8000",
        "--reload",  # Auto-reload for development
        "credvault.main:app",
    ]

    sys.exit(subprocess.run(cmd).returncode)
