"""
Pydantic schemas for the combustion backend.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    status: Literal["error"] = "error"
    description: str


class MessageResponse(BaseModel):
    message: str


# Fuels


class FuelResponse(BaseModel):
    id: int
    title: str
    heat: float
    molar_mass: Optional[float] = None
    density: Optional[float] = None
    card_image: Optional[str] = None
    short_desc: Optional[str] = None
    full_desc: Optional[str] = None
    is_gas: bool = False


class FuelCreateRequest(BaseModel):
    title: str = Field(..., max_length=100)
    heat: float = Field(..., allow_inf_nan=False)
    molar_mass: Optional[float] = None
    density: Optional[float] = None
    short_desc: Optional[str] = Field(default=None, max_length=200)
    full_desc: Optional[str] = None
    is_gas: bool = False


class FuelUpdateRequest(BaseModel):
    """All fields optional; only the ones present in the body are applied."""

    title: Optional[str] = Field(default=None, max_length=100)
    heat: Optional[float] = Field(default=None, allow_inf_nan=False)
    molar_mass: Optional[float] = None
    density: Optional[float] = None
    short_desc: Optional[str] = Field(default=None, max_length=200)
    full_desc: Optional[str] = None
    is_gas: Optional[bool] = None


class FuelListResponse(BaseModel):
    fuels: list[FuelResponse]


# Combustion requests


class CombustionResponse(BaseModel):
    id: int
    status: str
    date_create: float
    date_update: float
    date_finish: Optional[float] = None
    creator_id: int
    creator_login: Optional[str] = None
    moderator_id: Optional[int] = None
    moderator_login: Optional[str] = None
    molar_volume: Optional[float] = None
    final_result: Optional[float] = None
    calculation_status: str


class CombustionFuelResponse(FuelResponse):
    fuel_volume: float
    intermediate_energy: Optional[float] = None
    is_calculated: bool = False


class CombustionDetailResponse(CombustionResponse):
    fuels: list[CombustionFuelResponse] = Field(default_factory=list)


class CombustionListResponse(BaseModel):
    data: list[CombustionResponse]


class CombustionProgressResponse(CombustionResponse):
    calculated_count: int
    total_count: int


class MolarVolumeRequest(BaseModel):
    molar_volume: float = Field(..., allow_inf_nan=False)


class ModerateRequest(BaseModel):
    is_complete: bool


class CartIconResponse(BaseModel):
    id_combustion: int
    items_count: int


class FuelInCombustionRequest(BaseModel):
    fuel_id: int
    fuel_volume: float = Field(..., ge=0, allow_inf_nan=False)


class LinkResponse(BaseModel):
    request_id: int
    fuel_id: int
    fuel_volume: float
    intermediate_energy: Optional[float] = None
    is_calculated: bool = False


# Async calculation


class StartCalculationResponse(BaseModel):
    combustion_id: int
    fuels_count: int
    molar_volume: float
    token: str
    callback_url: str


class AsyncResultPayload(BaseModel):
    combustion_id: int
    fuel_id: int
    result: float = Field(..., allow_inf_nan=False)
    token: str = Field(..., min_length=1)


class AsyncResultResponse(BaseModel):
    status: Literal["success"] = "success"
    message: str
    stored: bool
    completed: bool


# Users


class UserResponse(BaseModel):
    id: int
    login: str
    name: str = ""
    is_moderator: bool = False


class RegisterRequest(BaseModel):
    login: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)
    name: str = ""
    is_moderator: bool = False


class LoginRequest(BaseModel):
    login: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: int
    user: UserResponse


class ProfileUpdateRequest(BaseModel):
    login: Optional[str] = Field(default=None, max_length=100)
    name: Optional[str] = None
    password: Optional[str] = None
