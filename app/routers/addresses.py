# app/routers/addresses.py
import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from app.core.auth import require_customer
from app.database import get_session
from app.models.user import User
from app.repositories.address_repo import AddressRepository
from app.schemas.address import AddressCreate, AddressRead, AddressUpdate
from app.services.address_service import AddressService

router = APIRouter(prefix="/addresses", tags=["Addresses"])

repo = AddressRepository()
service = AddressService(repo)


@router.get("", response_model=list[AddressRead])
def list_addresses(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    """
    The caller's saved addresses, default first.
    """
    return service.list_addresses(session, current_user.id)


@router.post("", response_model=AddressRead, status_code=status.HTTP_201_CREATED)
def create_address(
    payload: AddressCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    """
    Save an address. The first one saved becomes the default.
    """
    return service.create_address(session, current_user.id, payload)


@router.patch("/{address_id}", response_model=AddressRead)
def update_address(
    address_id: uuid.UUID,
    payload: AddressUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    """
    Partial update. Setting is_default=true clears it on the others.
    Past orders keep their own snapshot and are not affected.
    """
    return service.update_address(session, current_user.id, address_id, payload)


@router.delete("/{address_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_address(
    address_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    service.delete_address(session, current_user.id, address_id)
