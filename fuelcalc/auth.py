"""
Authentication: JWT issue/verify, logout deny-list and user accounts.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import jwt
from passlib.context import CryptContext

from fuelcalc.db import DbClient, UserRecord
from fuelcalc.denylist import TokenDenylist
from fuelcalc.errors import AuthError, ForbiddenError, NotFoundError, ValidationError
from fuelcalc.types import Role

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
JWT_ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass
class Claims:
    user_id: Optional[int]
    login: str = ""
    is_moderator: bool = False
    name: str = ""
    role: Role = Role.GUEST
    expires_at: Optional[int] = None
    token: Optional[str] = None

    @classmethod
    def guest(cls) -> "Claims":
        return cls(user_id=None)


@dataclass
class IssuedToken:
    access_token: str
    expires_in: int
    token_type: str = "Bearer"


def _strip_bearer(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX):].strip() or None


class AuthGate:
    def __init__(
        self,
        secret_key: str,
        issuer: str,
        expires_in: int,
        denylist: TokenDenylist,
    ):
        self.secret_key = secret_key
        self.issuer = issuer
        self.expires_in = expires_in
        self.denylist = denylist

    def issue(self, user: UserRecord) -> IssuedToken:
        now = int(time.time())
        payload = {
            "user_id": user.id,
            "login": user.login,
            "is_moderator": user.is_moderator,
            "name": user.name,
            "role": Role.from_user(user.id, user.is_moderator).value,
            "iss": self.issuer,
            "iat": now,
            "exp": now + self.expires_in,
        }
        token = jwt.encode(payload, self.secret_key, algorithm=JWT_ALGORITHM)
        return IssuedToken(access_token=token, expires_in=self.expires_in)

    def _decode(self, token: str) -> dict:
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[JWT_ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iss"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("token expired")
        except jwt.InvalidTokenError as exc:
            raise AuthError(f"invalid token: {exc}")

    def _is_denied(self, token: str) -> bool:
        try:
            return self.denylist.contains(token)
        except Exception:
            logger.warning("Token deny-list unavailable, skipping check", exc_info=True)
            return False

    def verify(self, authorization: Optional[str]) -> Claims:
        token = _strip_bearer(authorization)
        if not token:
            raise AuthError("authorization required")
        payload = self._decode(token)
        if self._is_denied(token):
            raise AuthError("token revoked")

        user_id = payload.get("user_id")
        is_moderator = bool(payload.get("is_moderator", False))
        return Claims(
            user_id=user_id,
            login=payload.get("login", ""),
            is_moderator=is_moderator,
            name=payload.get("name", ""),
            role=Role.from_user(user_id, is_moderator),
            expires_at=payload.get("exp"),
            token=token,
        )

    def verify_optional(self, authorization: Optional[str]) -> Claims:
        """Like ``verify`` but anonymous or broken credentials yield a guest."""
        try:
            return self.verify(authorization)
        except AuthError:
            return Claims.guest()

    def logout(self, authorization: Optional[str]) -> None:
        """Revoke the token until its natural expiry. Never fails."""
        token = _strip_bearer(authorization)
        if not token:
            return
        try:
            payload = self._decode(token)
        except AuthError:
            return
        remaining = int(payload["exp"] - time.time())
        if remaining <= 0:
            return
        try:
            self.denylist.add(token, remaining)
        except Exception:
            logger.exception("Failed to add token to deny-list")


def require_authenticated(claims: Claims) -> Claims:
    if not claims.role.is_authenticated:
        raise AuthError("authorization required")
    return claims


def require_moderator(claims: Claims) -> Claims:
    if claims.role != Role.MODERATOR:
        raise ForbiddenError(
            f"moderator role required, current role: {claims.role.value}"
        )
    return claims


class UserService:
    def __init__(self, db: DbClient, gate: AuthGate, allow_moderator_signup: bool = True):
        self.db = db
        self.gate = gate
        self.allow_moderator_signup = allow_moderator_signup

    def register(
        self, login: str, password: str, name: str = "", is_moderator: bool = False
    ) -> tuple[UserRecord, IssuedToken]:
        login = (login or "").strip()
        if not login:
            raise ValidationError("login cannot be empty")
        if not password:
            raise ValidationError("password cannot be empty")
        if is_moderator and not self.allow_moderator_signup:
            logger.info("Ignoring moderator flag on signup for %s", login)
            is_moderator = False

        user = self.db.create_user(
            login=login,
            password_hash=pwd_context.hash(password),
            name=name or "",
            is_moderator=is_moderator,
        )
        if not user:
            raise ValidationError(f"user with login '{login}' already exists")
        logger.info("Registered user %s (%s)", user.id, user.login)
        return user, self.gate.issue(user)

    def authenticate(self, login: str, password: str) -> tuple[UserRecord, IssuedToken]:
        user = self.db.get_user_by_login(login)
        if not user or not pwd_context.verify(password, user.password_hash):
            raise ForbiddenError("invalid login or password")
        return user, self.gate.issue(user)

    def profile(self, user_id: int) -> UserRecord:
        user = self.db.get_user(user_id)
        if not user:
            raise NotFoundError("user not found")
        return user

    def update_profile(self, user_id: int, fields: dict) -> UserRecord:
        """Partial update; only keys present in ``fields`` are changed."""
        updates = {}
        if "login" in fields:
            login = (fields["login"] or "").strip()
            if not login:
                raise ValidationError("login cannot be empty")
            updates["login"] = login
        if "name" in fields:
            updates["name"] = fields["name"] or ""
        if "password" in fields:
            if not fields["password"]:
                raise ValidationError("password cannot be empty")
            updates["password_hash"] = pwd_context.hash(fields["password"])
        if not updates:
            raise ValidationError("no fields to update")

        self.profile(user_id)
        user = self.db.update_user(user_id, updates)
        if not user:
            raise ValidationError(f"login '{updates.get('login')}' is already taken")
        return user
