# app/services/user_service.py
import logging
import uuid

from fastapi import HTTPException, status
from sqlmodel import Session

from app.models.user import User
from app.repositories.user_repo import UserRepository
from app.schemas.user import UserRead, UserRoleUpdate, UserStatusUpdate, UserUpdate

logger = logging.getLogger(__name__)


class UserService:
    """
    Business logic for profiles.

    Responsibilities:
      - self-service profile edits (name only)
      - admin role and account-status changes
      - map missing rows to 404
    """

    def __init__(self, repo: UserRepository):
        self.repo = repo

    def to_read(self, user: User) -> UserRead:
        return UserRead.model_validate(
            {**user.model_dump(), "has_legacy_bank_link": bool(user.plaid_item_id)}
        )

    # ----- Self profile -----

    def update_me(
        self,
        session: Session,
        current_user: User,
        payload: UserUpdate,
    ) -> UserRead:
        if payload.name is not None:
            current_user.name = payload.name
        return self.to_read(self.repo.update(session, current_user))

    # ----- Admin operations -----

    def list_users(
        self,
        session: Session,
        skip: int,
        limit: int,
        role: str | None = None,
    ) -> list[UserRead]:
        return [self.to_read(u) for u in self.repo.list(session, skip=skip, limit=limit, role=role)]

    def get_user(self, session: Session, user_id: uuid.UUID) -> User:
        """
        Raises:
            HTTPException(404): if not found.
        """
        user = self.repo.get_by_id(session, user_id)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found",
            )
        return user

    def update_role(
        self,
        session: Session,
        user_id: uuid.UUID,
        payload: UserRoleUpdate,
    ) -> UserRead:
        user = self.get_user(session, user_id)
        user.role = payload.role
        logger.info("User %s role set to %s", user_id, payload.role)
        return self.to_read(self.repo.update(session, user))

    def update_status(
        self,
        session: Session,
        user_id: uuid.UUID,
        payload: UserStatusUpdate,
    ) -> UserRead:
        user = self.get_user(session, user_id)
        user.account_status = payload.account_status
        logger.info("User %s account status set to %s", user_id, payload.account_status)
        return self.to_read(self.repo.update(session, user))
