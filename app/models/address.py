# app/models/address.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class CustomerAddress(SQLModel, table=True):
    """
    Saved delivery address owned by a customer.

    A customer may keep many addresses and delete them at any time;
    orders keep their own `address_snapshot`, so deleting an address
    never changes where a past order was delivered.
    """

    __tablename__ = "customer_addresses"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    customer_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
    )

    # Friendly name like "Home", "Office"
    label: str | None = Field(default=None, max_length=60)
    icon: str | None = Field(default=None, max_length=30)

    line1: str
    line2: str | None = None
    city: str
    state: str
    postal_code: str

    latitude: float | None = None
    longitude: float | None = None
    custom_pin_lat: float | None = None
    custom_pin_lng: float | None = None

    is_default: bool = Field(default=False, index=True)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
