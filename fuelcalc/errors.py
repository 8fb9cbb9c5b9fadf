"""
Error taxonomy shared by services and the HTTP layer.

Each error carries the HTTP status it maps to; the app installs a single
handler that renders them as ``{"status": "error", "description": ...}``.
"""

from __future__ import annotations


class FuelCalcError(Exception):
    status_code = 500

    def __init__(self, description: str):
        super().__init__(description)
        self.description = description


class ValidationError(FuelCalcError):
    """Malformed input or an unmet business precondition."""

    status_code = 400


class NotFoundError(FuelCalcError):
    status_code = 404


class InvalidStateError(FuelCalcError):
    """Operation is illegal in the request's current lifecycle state."""

    status_code = 409


class AuthError(FuelCalcError):
    """Missing, invalid or expired credential."""

    status_code = 401


class ForbiddenError(AuthError):
    """Credential is valid but not allowed, or a session token mismatch."""

    status_code = 403


class DownstreamError(FuelCalcError):
    """External calculator unreachable or answered with a non-success status."""

    status_code = 502
