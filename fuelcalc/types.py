"""
Shared enums for request lifecycle and user roles.
"""

from __future__ import annotations

from enum import Enum


class RequestStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    REJECTED = "rejected"
    DELETED = "deleted"


class CalculationStatus(str, Enum):
    """Orchestrator-owned marker, separate from the business status."""

    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"


class Role(str, Enum):
    GUEST = "guest"
    BUYER = "buyer"
    MODERATOR = "moderator"

    @classmethod
    def from_user(cls, user_id: int | None, is_moderator: bool) -> "Role":
        if not user_id:
            return cls.GUEST
        if is_moderator:
            return cls.MODERATOR
        return cls.BUYER

    @property
    def is_authenticated(self) -> bool:
        return self in (Role.BUYER, Role.MODERATOR)
