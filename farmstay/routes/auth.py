# Bearer-token identity for booking routes.
# Tokens are issued by the identity service (OTP/phone or email login); this module verifies
# them, resolves the user row and guards admin-only endpoints.
from __future__ import annotations

import os
import time
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Header, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models

JWT_SECRET: str = os.getenv("FARMSTAY_JWT_SECRET", "dev-secret-change-me")
JWT_ALG: str = "HS256"
JWT_TTL_SECONDS: int = 60 * 60 * 24 * 7  # 7 days


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def create_access_token(*, user: models.User, ttl_seconds: int = JWT_TTL_SECONDS) -> str:
    """Token in the identity service's format: sub=user id, role claim, HS256."""
    issued = int(time.time())
    claims = {"sub": str(user.id), "role": user.role, "iat": issued, "exp": issued + ttl_seconds}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("Invalid token") from exc


def bearer_token_from_auth_header(authorization: Optional[str]) -> str:
    if not authorization:
        raise _unauthorized("Authorization header missing")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Invalid Authorization header")
    return token.strip()


def _user_from_token(db: Session, token: str) -> models.User:
    subject = str(decode_token(token).get("sub") or "")
    if not subject.isdigit():
        raise _unauthorized("Invalid token payload")
    user = db.get(models.User, int(subject))
    if user is None:
        raise _unauthorized("User not found")
    return user


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> models.User:
    return _user_from_token(db, bearer_token_from_auth_header(authorization))


def get_current_user_optional(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[models.User]:
    """
    The caller when a valid bearer token is present, otherwise None.

    Booking creation and farm search are public; a bad token there means "anonymous".
    """
    if not authorization:
        return None
    try:
        return _user_from_token(db, bearer_token_from_auth_header(authorization))
    except HTTPException:
        return None


def is_admin(user: Optional[models.User]) -> bool:
    return user is not None and user.role == "admin"


def require_role(role: str) -> Callable[..., models.User]:
    def _dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role != role:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{role.capitalize()} role required")
        return user

    return _dependency


require_admin = require_role("admin")
