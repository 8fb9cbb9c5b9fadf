"""
FastAPI application entry point for the combustion backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from fuelcalc.config import Settings, get_settings
from fuelcalc.dependencies import Services, build_services
from fuelcalc.errors import FuelCalcError
from fuelcalc.routes import router

logger = logging.getLogger(__name__)


def _error_response(status_code: int, description: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "description": description},
    )


def _validation_description(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid request"


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Waiting for in-flight calculator dispatches")
        services.runner.shutdown(wait=True)

    app = FastAPI(title="Fuel Combustion Backend", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(FuelCalcError)
    async def handle_fuelcalc_error(request: Request, exc: FuelCalcError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.description)
        return _error_response(exc.status_code, exc.description)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _error_response(400, _validation_description(exc))

    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
