# app/routers/users.py
import uuid

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_auth, require_admin
from app.database import get_session
from app.models.user import User
from app.repositories.user_repo import UserRepository
from app.schemas.user import Role, UserRead, UserRoleUpdate, UserStatusUpdate, UserUpdate
from app.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["Users"])

repo = UserRepository()
service = UserService(repo)


# -------- Self profile --------


@router.get("/me", response_model=UserRead)
def read_me(current_user: User = Depends(require_auth)):
    """
    Return the caller's profile.

    The row is created on the first authenticated request with
    role "customer" and a name taken from the token.
    """
    return service.to_read(current_user)


@router.patch("/me", response_model=UserRead)
def update_me(
    payload: UserUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_auth),
):
    """
    Update the caller's display name.
    """
    return service.update_me(session, current_user, payload)


# -------- Admin endpoints --------


@router.get(
    "",
    response_model=list[UserRead],
    dependencies=[Depends(require_admin)],
)
def list_users(
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = 50,
    role: Role | None = None,
):
    """
    List users (admin only), optionally one role.
    """
    return service.list_users(session, skip, limit, role)


@router.get(
    "/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_admin)],
)
def get_user(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return service.to_read(service.get_user(session, user_id))


@router.patch(
    "/{user_id}/role",
    response_model=UserRead,
    dependencies=[Depends(require_admin)],
)
def change_role(
    user_id: uuid.UUID,
    payload: UserRoleUpdate,
    session: Session = Depends(get_session),
):
    """
    Set a user's role (admin only): customer, runner or admin.
    """
    return service.update_role(session, user_id, payload)


@router.patch(
    "/{user_id}/status",
    response_model=UserRead,
    dependencies=[Depends(require_admin)],
)
def change_status(
    user_id: uuid.UUID,
    payload: UserStatusUpdate,
    session: Session = Depends(get_session),
):
    """
    Enable or disable an account (admin only).

    Disabled accounts are rejected by every authenticated route.
    """
    return service.update_status(session, user_id, payload)
