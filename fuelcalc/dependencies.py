"""
Dependency wiring for the FastAPI app.

Services are built once per application by ``build_services`` and kept on
``app.state.services``; route dependencies read them from the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from fuelcalc.auth import (
    AuthGate,
    Claims,
    UserService,
    require_authenticated,
    require_moderator,
)
from fuelcalc.calculator import CalculatorClient, HttpCalculatorClient
from fuelcalc.combustions import CombustionService
from fuelcalc.config import Settings
from fuelcalc.db import DbClient, InMemoryDbClient, PostgresDbClient
from fuelcalc.denylist import InMemoryTokenDenylist, RedisTokenDenylist, TokenDenylist
from fuelcalc.fuels import FuelCatalog
from fuelcalc.orchestrator import CalculationOrchestrator
from fuelcalc.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from fuelcalc.worker import TaskRunner, ThreadPoolTaskRunner

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    db: DbClient
    storage: StorageClient
    denylist: TokenDenylist
    runner: TaskRunner
    fuels: FuelCatalog
    combustions: CombustionService
    orchestrator: CalculationOrchestrator
    auth: AuthGate
    users: UserService


def _build_db(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory database")
        return InMemoryDbClient()
    return PostgresDbClient(settings.database_url)


def _build_storage(settings: Settings) -> StorageClient:
    if settings.use_in_memory_backends or not settings.s3_bucket:
        return InMemoryStorageClient()
    return S3StorageClient(
        bucket=settings.s3_bucket,
        endpoint=settings.s3_endpoint or "",
        access_key_id=settings.s3_access_key_id or "",
        secret_access_key=settings.s3_secret_access_key or "",
        region=settings.s3_region or "us-east-1",
        public_base_url=settings.s3_public_base_url,
    )


def _build_denylist(settings: Settings) -> TokenDenylist:
    if settings.use_in_memory_backends or not settings.redis_url:
        return InMemoryTokenDenylist()
    return RedisTokenDenylist(
        url=settings.redis_url, key_prefix=settings.redis_key_prefix
    )


def build_services(
    settings: Settings,
    *,
    db: Optional[DbClient] = None,
    storage: Optional[StorageClient] = None,
    denylist: Optional[TokenDenylist] = None,
    calculator: Optional[CalculatorClient] = None,
    runner: Optional[TaskRunner] = None,
) -> Services:
    """Construct every service once; explicit arguments override the defaults."""
    db = db or _build_db(settings)
    storage = storage or _build_storage(settings)
    denylist = denylist or _build_denylist(settings)
    calculator = calculator or HttpCalculatorClient(
        settings.calculator_url, timeout=settings.calculator_timeout_seconds
    )
    runner = runner or ThreadPoolTaskRunner(max_workers=settings.dispatch_max_workers)

    gate = AuthGate(
        secret_key=settings.jwt_secret_key,
        issuer=settings.jwt_issuer,
        expires_in=settings.jwt_expires_in,
        denylist=denylist,
    )
    return Services(
        settings=settings,
        db=db,
        storage=storage,
        denylist=denylist,
        runner=runner,
        fuels=FuelCatalog(db, storage),
        combustions=CombustionService(db, settings.default_molar_volume),
        orchestrator=CalculationOrchestrator(
            db,
            calculator,
            runner,
            callback_url=settings.callback_url,
            fixed_token=settings.async_service_token,
            fallback_moderator_id=settings.auto_complete_moderator_id,
        ),
        auth=gate,
        users=UserService(db, gate, settings.allow_moderator_signup),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db_client(services: Services = Depends(get_services)) -> DbClient:
    return services.db


def get_fuel_catalog(services: Services = Depends(get_services)) -> FuelCatalog:
    return services.fuels


def get_combustion_service(
    services: Services = Depends(get_services),
) -> CombustionService:
    return services.combustions


def get_orchestrator(
    services: Services = Depends(get_services),
) -> CalculationOrchestrator:
    return services.orchestrator


def get_user_service(services: Services = Depends(get_services)) -> UserService:
    return services.users


def get_auth_gate(services: Services = Depends(get_services)) -> AuthGate:
    return services.auth


def get_optional_claims(
    authorization: Optional[str] = Header(default=None),
    gate: AuthGate = Depends(get_auth_gate),
) -> Claims:
    return gate.verify_optional(authorization)


def get_current_claims(
    authorization: Optional[str] = Header(default=None),
    gate: AuthGate = Depends(get_auth_gate),
) -> Claims:
    return require_authenticated(gate.verify(authorization))


def get_moderator_claims(claims: Claims = Depends(get_current_claims)) -> Claims:
    return require_moderator(claims)
