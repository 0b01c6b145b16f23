# app/core/auth.py
import uuid
from typing import Any, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlmodel import Session

from app.core.config import get_settings
from app.database import get_session
from app.models.user import User

settings = get_settings()

ROLES = ("customer", "runner", "admin")

# auto_error=False: a missing Authorization header yields None instead of
# a 403, so handlers decide how to treat anonymous callers.
bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify a Supabase access token and return its claims.

    Checks the HS256 signature against SUPABASE_JWT_SECRET and `exp`.
    `aud` is not checked; Supabase sets it per project.

    Raises:
        HTTPException(401): bad signature, malformed or expired token.
    """
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.SUPABASE_JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def _display_name(claims: dict[str, Any], email: str) -> str:
    metadata = claims.get("user_metadata") or {}
    name = metadata.get("full_name") or metadata.get("name")
    if name:
        return str(name)[:50]
    return email.split("@", 1)[0][:50]


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User | None:
    """
    Resolve the caller's profile from the bearer token.

    No header => None. On the first authenticated request a `users` row
    is created with role "customer"; runners and admins are promoted by
    an admin afterwards.
    """
    if credentials is None:
        return None

    claims = decode_access_token(credentials.credentials)
    sub = claims.get("sub")
    email = claims.get("email")
    if not sub or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing sub/email",
        )

    try:
        user_id = uuid.UUID(sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid sub in token",
        )

    user = session.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            email=email,
            name=_display_name(claims, email),
            role="customer",
        )
        session.add(user)
        session.commit()
        session.refresh(user)

    return user


def require_auth(user: User | None = Depends(get_current_user)) -> User:
    """
    Reject anonymous callers (401) and disabled accounts (403).
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    if user.account_status != "active":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )
    return user


def _require_role(role: str) -> Callable[[User], User]:
    def dependency(user: User = Depends(require_auth)) -> User:
        if user.role != role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{role.capitalize()} access required",
            )
        return user

    dependency.__name__ = f"require_{role}"
    return dependency


require_customer = _require_role("customer")
require_runner = _require_role("runner")
require_admin = _require_role("admin")
