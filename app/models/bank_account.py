# app/models/bank_account.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class BankAccount(SQLModel, table=True):
    """
    Linked bank account (read model).

    Rows are written by the bank-link integration; this service only reads
    them. A soft-disconnected account keeps its row with `disconnected_at`
    set and no longer counts as linked.
    """

    __tablename__ = "bank_accounts"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    customer_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
    )

    institution_name: str | None = None
    account_mask: str | None = Field(default=None, max_length=8)
    is_primary: bool = False

    disconnected_at: datetime | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
