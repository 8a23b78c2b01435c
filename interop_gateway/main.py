"""
Clinical Interoperability Gateway - Main Application Entry Point
HL7 v2.x and FHIR R4 exchange with registered external systems
"""

# Load environment variables
import os
from dotenv import load_dotenv
load_dotenv()

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from interop_gateway.api.v1.api import api_router as v1_router
from interop_gateway.config import GatewaySettings
from interop_gateway.di import ServiceContainer
from interop_gateway.exceptions import InteropError
from interop_gateway.utils.error_responses import (
    format_validation_error,
    get_correlation_id,
    get_hint_for_status_code,
    interop_error_response,
)
from interop_gateway.utils.logging_utils import log_service_error

SERVICE_NAME = "Clinical Interoperability Gateway"
SERVICE_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[GatewaySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Runtime settings; read from the environment at startup when omitted
        transport: httpx transport for outbound calls (tests pass a MockTransport)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifecycle management - startup and shutdown
        """
        logger.info("Initializing %s...", SERVICE_NAME)
        container = ServiceContainer(settings or GatewaySettings.from_env(), transport=transport)
        await container.startup()
        app.state.container = container
        logger.info("%s ready", SERVICE_NAME)

        yield

        logger.info("Shutting down %s...", SERVICE_NAME)
        await container.shutdown()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=SERVICE_NAME,
        description="HL7 v2.x parsing and generation, FHIR R4 mapping and resilient delivery to partner systems",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.include_router(v1_router, prefix="/api/v1")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.get("/health", include_in_schema=False)
    async def root_health(request: Request):
        """
        Lightweight health check for container orchestration.
        """
        container = getattr(request.app.state, "container", None)
        circuits = container.gateway.snapshot() if container and container.gateway else []
        open_circuits = [c["system_name"] for c in circuits if c["circuit"]["state"] != "CLOSED"]
        return {
            "status": "healthy" if not open_circuits else "degraded",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "external_systems": len(circuits),
            "open_circuits": open_circuits,
        }

    # ==================== ERROR HANDLERS ====================

    @app.exception_handler(InteropError)
    async def interop_exception_handler(request: Request, exc: InteropError):
        correlation_id = get_correlation_id(request)
        log_service_error(
            exc,
            {"path": request.url.path, "method": request.method},
            correlation_id,
        )

        headers = {"X-Correlation-ID": correlation_id}
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            headers["Retry-After"] = str(max(1, int(retry_after + 0.999)))

        return JSONResponse(
            status_code=exc.status_code,
            content=interop_error_response(exc, correlation_id, str(request.url.path)),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        correlation_id = get_correlation_id(request)
        logger.warning("Validation error [%s] at %s: %s", correlation_id, request.url.path, exc.errors())
        return JSONResponse(
            status_code=422,
            content=format_validation_error(exc.errors(), correlation_id, str(request.url.path)),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """
        HTTP exception handler for FastAPI HTTPException.
        Provides consistent error response format with helpful hints.
        """
        correlation_id = get_correlation_id(request)

        if exc.status_code >= 500:
            logger.error("HTTPException [%s] %s: %s", correlation_id, exc.status_code, exc.detail)
        else:
            logger.warning("HTTPException [%s] %s: %s", correlation_id, exc.status_code, exc.detail)

        payload = {
            "status": "error",
            "message": exc.detail if exc.detail else "Request failed",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status_code": exc.status_code,
            "path": str(request.url.path),
        }
        hint = get_hint_for_status_code(exc.status_code)
        if hint:
            payload["hint"] = hint

        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler for unhandled exceptions, database errors included.
        """
        correlation_id = get_correlation_id(request)

        logger.error(
            "Unhandled exception [%s] at %s %s: %s",
            correlation_id,
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )

        is_debug = os.getenv("DEBUG", "False").lower() == "true"
        payload = {
            "status": "error",
            "message": f"Internal server error: {type(exc).__name__}" if is_debug else "An unexpected error occurred",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status_code": 500,
            "path": str(request.url.path),
        }
        if is_debug:
            payload["detail"] = str(exc)

        return JSONResponse(status_code=500, content=payload)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "interop_gateway.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("DEBUG", "False").lower() == "true",
    )
