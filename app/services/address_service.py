# app/services/address_service.py
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlmodel import Session

from app.models.address import CustomerAddress
from app.repositories.address_repo import AddressRepository
from app.schemas.address import AddressCreate, AddressRead, AddressUpdate

# Fields frozen into orders.address_snapshot
SNAPSHOT_FIELDS = (
    "label",
    "icon",
    "line1",
    "line2",
    "city",
    "state",
    "postal_code",
    "latitude",
    "longitude",
    "custom_pin_lat",
    "custom_pin_lng",
)


def create_address_snapshot(address: CustomerAddress) -> dict[str, Any]:
    """Plain-dict copy of the delivery fields, detached from the live row."""
    return {field: getattr(address, field) for field in SNAPSHOT_FIELDS}


def format_address(address: CustomerAddress | dict[str, Any]) -> str:
    """
    One-line display form: "line1, line2, City, ST 12345".

    Accepts a saved address or an order's snapshot dict.
    """
    get = address.get if isinstance(address, dict) else lambda key: getattr(address, key, None)
    parts = [get("line1"), get("line2"), get("city")]
    state_zip = " ".join(p for p in (get("state"), get("postal_code")) if p)
    parts.append(state_zip)
    return ", ".join(p for p in parts if p)


class AddressService:
    """
    Business logic for a customer's saved addresses.

    Rules:
      - customers only see and change their own addresses (404 otherwise)
      - the first saved address becomes the default
      - deleting an address never touches past orders (they keep a snapshot)
    """

    def __init__(self, address_repo: AddressRepository):
        self.address_repo = address_repo

    def _to_read(self, address: CustomerAddress) -> AddressRead:
        return AddressRead.model_validate(
            {**address.model_dump(), "formatted": format_address(address)}
        )

    def get_owned(
        self,
        session: Session,
        customer_id: uuid.UUID,
        address_id: uuid.UUID,
    ) -> CustomerAddress:
        address = self.address_repo.get_by_id(session, address_id)
        if not address or address.customer_id != customer_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Address not found",
            )
        return address

    def list_addresses(self, session: Session, customer_id: uuid.UUID) -> list[AddressRead]:
        return [
            self._to_read(a)
            for a in self.address_repo.list_for_customer(session, customer_id)
        ]

    def create_address(
        self,
        session: Session,
        customer_id: uuid.UUID,
        payload: AddressCreate,
    ) -> AddressRead:
        address = CustomerAddress(customer_id=customer_id, **payload.model_dump())
        if not address.is_default and self.address_repo.get_default(session, customer_id) is None:
            address.is_default = True
        return self._to_read(self.address_repo.create(session, address))

    def update_address(
        self,
        session: Session,
        customer_id: uuid.UUID,
        address_id: uuid.UUID,
        payload: AddressUpdate,
    ) -> AddressRead:
        address = self.get_owned(session, customer_id, address_id)
        for key, value in payload.model_dump(exclude_unset=True).items():
            if key in ("line1", "city", "state", "postal_code", "is_default") and value is None:
                continue
            setattr(address, key, value)
        address.updated_at = datetime.now(timezone.utc)
        return self._to_read(self.address_repo.update(session, address))

    def delete_address(
        self,
        session: Session,
        customer_id: uuid.UUID,
        address_id: uuid.UUID,
    ) -> None:
        address = self.get_owned(session, customer_id, address_id)
        self.address_repo.delete(session, address)
