"""
HTTP routes for the combustion backend API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Header, Query, UploadFile

from fuelcalc.auth import AuthGate, Claims, UserService
from fuelcalc.combustions import CombustionService
from fuelcalc.db import CombustionRecord, DbClient, FuelRecord, LinkRecord, UserRecord
from fuelcalc.dependencies import (
    get_auth_gate,
    get_combustion_service,
    get_current_claims,
    get_db_client,
    get_fuel_catalog,
    get_moderator_claims,
    get_optional_claims,
    get_orchestrator,
    get_user_service,
)
from fuelcalc.fuels import FuelCatalog
from fuelcalc.orchestrator import CalculationOrchestrator, CalculationResult
from fuelcalc.schemas import (
    AsyncResultPayload,
    AsyncResultResponse,
    CartIconResponse,
    CombustionDetailResponse,
    CombustionFuelResponse,
    CombustionListResponse,
    CombustionProgressResponse,
    CombustionResponse,
    ErrorResponse,
    FuelCreateRequest,
    FuelInCombustionRequest,
    FuelListResponse,
    FuelResponse,
    FuelUpdateRequest,
    LinkResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ModerateRequest,
    MolarVolumeRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    StartCalculationResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    status_code: {"model": ErrorResponse} for status_code in (400, 401, 403, 404, 409, 502)
}

router = APIRouter(responses=ERROR_RESPONSES)


def _fuel_response(fuel: FuelRecord) -> FuelResponse:
    return FuelResponse(**{k: v for k, v in fuel.as_dict().items() if k != "is_delete"})


def _login_of(db: DbClient, user_id: Optional[int]) -> Optional[str]:
    if not user_id:
        return None
    user = db.get_user(user_id)
    return user.login if user else None


def _combustion_fields(db: DbClient, record: CombustionRecord) -> dict:
    fields = record.as_dict()
    fields["creator_login"] = _login_of(db, record.creator_id)
    fields["moderator_login"] = _login_of(db, record.moderator_id)
    return fields


def _link_response(link: LinkRecord) -> LinkResponse:
    return LinkResponse(
        request_id=link.request_id,
        fuel_id=link.fuel_id,
        fuel_volume=link.fuel_volume,
        intermediate_energy=link.intermediate_energy,
        is_calculated=link.is_calculated,
    )


def _login_response(user: UserRecord, token) -> LoginResponse:
    return LoginResponse(
        access_token=token.access_token,
        token_type=token.token_type,
        expires_in=token.expires_in,
        user=UserResponse(**user.as_dict()),
    )


# Fuels


@router.get("/fuels", response_model=FuelListResponse)
def list_fuels(
    title: Optional[str] = Query(None, description="Case-insensitive title filter"),
    catalog: FuelCatalog = Depends(get_fuel_catalog),
):
    return FuelListResponse(fuels=[_fuel_response(f) for f in catalog.list(title)])


@router.get("/fuels/{fuel_id}", response_model=FuelResponse)
def get_fuel(fuel_id: int, catalog: FuelCatalog = Depends(get_fuel_catalog)):
    return _fuel_response(catalog.get(fuel_id))


@router.post("/fuels", response_model=FuelResponse, status_code=201)
def create_fuel(
    payload: FuelCreateRequest,
    catalog: FuelCatalog = Depends(get_fuel_catalog),
    _: Claims = Depends(get_moderator_claims),
):
    return _fuel_response(catalog.create(payload.model_dump()))


@router.put("/fuels/{fuel_id}", response_model=FuelResponse)
def update_fuel(
    fuel_id: int,
    payload: FuelUpdateRequest,
    catalog: FuelCatalog = Depends(get_fuel_catalog),
    _: Claims = Depends(get_moderator_claims),
):
    return _fuel_response(catalog.update(fuel_id, payload.model_dump(exclude_unset=True)))


@router.delete("/fuels/{fuel_id}", response_model=MessageResponse)
def delete_fuel(
    fuel_id: int,
    catalog: FuelCatalog = Depends(get_fuel_catalog),
    _: Claims = Depends(get_moderator_claims),
):
    catalog.delete(fuel_id)
    return MessageResponse(message="fuel deleted")


@router.post("/fuels/{fuel_id}/image", response_model=FuelResponse)
async def upload_fuel_image(
    fuel_id: int,
    image: UploadFile = File(...),
    catalog: FuelCatalog = Depends(get_fuel_catalog),
    _: Claims = Depends(get_moderator_claims),
):
    data = await image.read()
    fuel = catalog.upload_image(
        fuel_id,
        image.filename or "image",
        data,
        image.content_type or "application/octet-stream",
    )
    return _fuel_response(fuel)


@router.post("/fuels/{fuel_id}/add-to-cart", response_model=LinkResponse, status_code=201)
def add_fuel_to_cart(
    fuel_id: int,
    fuel_volume: float = Query(0.0, ge=0, allow_inf_nan=False),
    service: CombustionService = Depends(get_combustion_service),
    claims: Claims = Depends(get_current_claims),
):
    return _link_response(service.add_fuel(claims.user_id, fuel_id, fuel_volume))


# Combustion requests


@router.get("/combustions", response_model=CombustionListResponse)
def list_combustions(
    status: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, description="DD.MM.YYYY"),
    end_date: Optional[str] = Query(None, description="DD.MM.YYYY"),
    service: CombustionService = Depends(get_combustion_service),
    db: DbClient = Depends(get_db_client),
    claims: Claims = Depends(get_current_claims),
):
    records = service.list(
        claims.user_id,
        is_moderator=claims.is_moderator,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    return CombustionListResponse(
        data=[CombustionResponse(**_combustion_fields(db, r)) for r in records]
    )


@router.get("/combustions/cart-icon", response_model=CartIconResponse)
def cart_icon(
    service: CombustionService = Depends(get_combustion_service),
    claims: Claims = Depends(get_optional_claims),
):
    request_id, count = service.cart_icon(claims.user_id)
    return CartIconResponse(id_combustion=request_id, items_count=count)


@router.get("/combustions/{request_id}", response_model=CombustionDetailResponse)
def get_combustion(
    request_id: int,
    service: CombustionService = Depends(get_combustion_service),
    db: DbClient = Depends(get_db_client),
    claims: Claims = Depends(get_current_claims),
):
    detail = service.get(request_id, claims.user_id, claims.is_moderator)
    fuels = [
        CombustionFuelResponse(
            **_fuel_response(fuel).model_dump(),
            fuel_volume=link.fuel_volume,
            intermediate_energy=link.intermediate_energy,
            is_calculated=link.is_calculated,
        )
        for link, fuel in detail.fuels
    ]
    return CombustionDetailResponse(
        **_combustion_fields(db, detail.request), fuels=fuels
    )


@router.put("/combustions/{request_id}", response_model=CombustionResponse)
def update_molar_volume(
    request_id: int,
    payload: MolarVolumeRequest,
    service: CombustionService = Depends(get_combustion_service),
    db: DbClient = Depends(get_db_client),
    claims: Claims = Depends(get_current_claims),
):
    record = service.set_molar_volume(request_id, payload.molar_volume, claims.user_id)
    return CombustionResponse(**_combustion_fields(db, record))


@router.put("/combustions/{request_id}/form", response_model=CombustionResponse)
def submit_combustion(
    request_id: int,
    service: CombustionService = Depends(get_combustion_service),
    db: DbClient = Depends(get_db_client),
    claims: Claims = Depends(get_current_claims),
):
    record = service.submit(request_id, claims.user_id)
    return CombustionResponse(**_combustion_fields(db, record))


@router.put("/combustions/{request_id}/moderate", response_model=CombustionResponse)
def moderate_combustion(
    request_id: int,
    payload: ModerateRequest,
    service: CombustionService = Depends(get_combustion_service),
    db: DbClient = Depends(get_db_client),
    claims: Claims = Depends(get_moderator_claims),
):
    record = service.moderate(request_id, claims.user_id, payload.is_complete)
    return CombustionResponse(**_combustion_fields(db, record))


@router.delete("/combustions", response_model=MessageResponse)
def delete_current_draft(
    service: CombustionService = Depends(get_combustion_service),
    claims: Claims = Depends(get_current_claims),
):
    service.delete_current_draft(claims.user_id)
    return MessageResponse(message="request deleted")


@router.delete("/combustions/{request_id}", response_model=MessageResponse)
def delete_combustion(
    request_id: int,
    service: CombustionService = Depends(get_combustion_service),
    claims: Claims = Depends(get_current_claims),
):
    service.delete(request_id, claims.user_id)
    return MessageResponse(message="request deleted")


@router.get(
    "/combustions/{request_id}/progress", response_model=CombustionProgressResponse
)
def combustion_progress(
    request_id: int,
    service: CombustionService = Depends(get_combustion_service),
    orchestrator: CalculationOrchestrator = Depends(get_orchestrator),
    db: DbClient = Depends(get_db_client),
    claims: Claims = Depends(get_current_claims),
):
    # Ownership and visibility checks.
    service.get(request_id, claims.user_id, claims.is_moderator)
    progress = orchestrator.get_progress(request_id)
    return CombustionProgressResponse(
        **_combustion_fields(db, progress.request),
        calculated_count=progress.calculated_count,
        total_count=progress.total_count,
    )


@router.post(
    "/combustions/{request_id}/async-calculate",
    response_model=StartCalculationResponse,
    status_code=202,
)
def start_async_calculation(
    request_id: int,
    orchestrator: CalculationOrchestrator = Depends(get_orchestrator),
    claims: Claims = Depends(get_moderator_claims),
):
    """
    Fan the request's fuels out to the calculator. Returns before any
    result arrives.
    """
    session = orchestrator.start_session(request_id, moderator_id=claims.user_id)
    return StartCalculationResponse(
        combustion_id=session.combustion_id,
        fuels_count=session.fuel_count,
        molar_volume=session.molar_volume,
        token=session.token,
        callback_url=session.callback_url,
    )


@router.post("/async/update-result", response_model=AsyncResultResponse)
def update_async_result(
    payload: AsyncResultPayload,
    orchestrator: CalculationOrchestrator = Depends(get_orchestrator),
):
    ack = orchestrator.receive_result(
        CalculationResult(
            combustion_id=payload.combustion_id,
            fuel_id=payload.fuel_id,
            result=payload.result,
            token=payload.token,
        )
    )
    return AsyncResultResponse(
        message="result accepted", stored=ack.stored, completed=ack.completed
    )


# Request <-> fuel links


@router.delete("/fuel-combustions", response_model=MessageResponse)
def remove_fuel_from_combustion(
    fuel_id: int = Query(...),
    service: CombustionService = Depends(get_combustion_service),
    claims: Claims = Depends(get_current_claims),
):
    service.remove_fuel(claims.user_id, fuel_id)
    return MessageResponse(message="fuel removed from request")


@router.put("/fuel-combustions", response_model=LinkResponse)
def update_fuel_in_combustion(
    payload: FuelInCombustionRequest,
    service: CombustionService = Depends(get_combustion_service),
    claims: Claims = Depends(get_current_claims),
):
    link = service.update_fuel_volume(claims.user_id, payload.fuel_id, payload.fuel_volume)
    return _link_response(link)


# Users


@router.post("/users/register", response_model=LoginResponse, status_code=201)
def register_user(
    payload: RegisterRequest, users: UserService = Depends(get_user_service)
):
    user, token = users.register(
        payload.login, payload.password, payload.name, payload.is_moderator
    )
    return _login_response(user, token)


@router.post("/users/login", response_model=LoginResponse)
def login_user(payload: LoginRequest, users: UserService = Depends(get_user_service)):
    user, token = users.authenticate(payload.login, payload.password)
    return _login_response(user, token)


@router.post("/users/logout", response_model=MessageResponse)
def logout_user(
    authorization: Optional[str] = Header(default=None),
    gate: AuthGate = Depends(get_auth_gate),
):
    gate.logout(authorization)
    return MessageResponse(message="logged out")


@router.get("/users/profile", response_model=UserResponse)
def get_profile(
    users: UserService = Depends(get_user_service),
    claims: Claims = Depends(get_current_claims),
):
    return UserResponse(**users.profile(claims.user_id).as_dict())


@router.put("/users/profile", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    users: UserService = Depends(get_user_service),
    claims: Claims = Depends(get_current_claims),
):
    user = users.update_profile(claims.user_id, payload.model_dump(exclude_unset=True))
    return UserResponse(**user.as_dict())
