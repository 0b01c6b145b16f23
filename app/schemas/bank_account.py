# app/schemas/bank_account.py
import uuid
from datetime import datetime

from sqlmodel import SQLModel


class BankAccountRead(SQLModel):
    """
    Linked account as shown in the app. Only the last digits are exposed.
    """

    id: uuid.UUID
    institution_name: str | None
    account_mask: str | None
    is_primary: bool
    created_at: datetime
