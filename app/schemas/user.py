# app/schemas/user.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import EmailStr, ConfigDict, field_validator
from sqlmodel import SQLModel, Field

# Anonymous callers have no row, so there is no "guest" role.
Role = Literal["customer", "runner", "admin"]
AccountStatus = Literal["active", "disabled"]


def _strip_name(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("name cannot be empty")
    return v


class UserRead(SQLModel):
    """Profile as returned to its owner and to admins."""

    id: uuid.UUID
    email: EmailStr
    name: str
    role: Role
    account_status: AccountStatus
    daily_usage: float
    daily_limit: float
    has_legacy_bank_link: bool = False
    created_at: datetime


class PartySummary(SQLModel):
    """
    The other side of an order as shown on order cards.

    Email is not included; customers and runners only see names.
    """

    id: uuid.UUID
    name: str
    role: Role


class UserUpdate(SQLModel):
    """
    Partial profile update. Only `name` is editable by the user.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=50)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        return _strip_name(v)


class UserRoleUpdate(SQLModel):
    """Admin: promote/demote a user."""

    model_config = ConfigDict(extra="forbid")
    role: Role


class UserStatusUpdate(SQLModel):
    """Admin: enable or disable an account."""

    model_config = ConfigDict(extra="forbid")
    account_status: AccountStatus
