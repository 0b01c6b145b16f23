# app/schemas/address.py
import uuid
from datetime import datetime

from sqlmodel import SQLModel, Field


class AddressBase(SQLModel):
    label: str | None = Field(default=None, max_length=60)
    icon: str | None = Field(default=None, max_length=30)
    line1: str = Field(min_length=1)
    line2: str | None = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=2, max_length=2)
    postal_code: str = Field(min_length=5, max_length=10)
    latitude: float | None = None
    longitude: float | None = None
    custom_pin_lat: float | None = None
    custom_pin_lng: float | None = None


class AddressCreate(AddressBase):
    """
    Payload for saving a new address.
    """

    is_default: bool = False


class AddressUpdate(SQLModel):
    """
    Partial update; only provided fields change.
    """

    label: str | None = Field(default=None, max_length=60)
    icon: str | None = Field(default=None, max_length=30)
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = Field(default=None, min_length=2, max_length=2)
    postal_code: str | None = Field(default=None, min_length=5, max_length=10)
    latitude: float | None = None
    longitude: float | None = None
    custom_pin_lat: float | None = None
    custom_pin_lng: float | None = None
    is_default: bool | None = None


class AddressRead(AddressBase):
    id: uuid.UUID
    customer_id: uuid.UUID
    is_default: bool
    formatted: str
    created_at: datetime
    updated_at: datetime
