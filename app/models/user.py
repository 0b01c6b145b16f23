# app/models/user.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """
    Persistent user profile.

    Identity:
      - id: MUST match Supabase auth.users.id (UUID from JWT "sub")

    Role:
      - "customer" | "runner" | "admin"
      - unauthenticated callers are represented by the absence of a token.

    This table is *not* responsible for password hashes. Supabase Auth
    stores the password in its own schema. We only mirror identity,
    name, application role and the few profile fields the order flow reads.
    """

    __tablename__ = "users"

    id: uuid.UUID = Field(
        primary_key=True,
        index=True,
        description="Matches Supabase auth.users.id",
    )

    email: str = Field(
        unique=True,
        index=True,
        description="Email from Supabase auth.users",
    )

    # Display name shown to the other party of an order
    name: str = Field(
        max_length=50,
        description="Display name; first part of email by default",
    )

    # Application role (not Supabase RLS role)
    role: str = Field(
        default="customer",
        index=True,
        description="Application role: customer | runner | admin",
    )

    # active | disabled (runner accounts can be switched off by admins)
    account_status: str = Field(
        default="active",
        description="Account status: active | disabled",
    )

    # Legacy single bank link, superseded by the bank_accounts table
    plaid_item_id: str | None = Field(
        default=None,
        description="Legacy bank-link item id",
    )

    daily_usage: float = Field(
        default=0.0,
        description="Cash requested today",
    )
    daily_limit: float = Field(
        default=1000.0,
        description="Maximum cash a customer may request per day",
    )
    daily_usage_reset_at: datetime | None = Field(
        default=None,
        description="When daily_usage was last zeroed (UTC)",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
