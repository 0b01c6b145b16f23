# app/repositories/address_repo.py
import uuid

from sqlalchemy import update
from sqlmodel import Session, select

from app.models.address import CustomerAddress


class AddressRepository:
    """
    Data access layer for customer_addresses.

    At most one address per customer carries `is_default`; the writes that
    set the flag clear it on the customer's other rows in the same commit.
    """

    def list_for_customer(
        self,
        session: Session,
        customer_id: uuid.UUID,
    ) -> list[CustomerAddress]:
        stmt = (
            select(CustomerAddress)
            .where(CustomerAddress.customer_id == customer_id)
            .order_by(CustomerAddress.is_default.desc(), CustomerAddress.created_at.desc())
        )
        return list(session.exec(stmt).all())

    def get_by_id(self, session: Session, address_id: uuid.UUID) -> CustomerAddress | None:
        return session.get(CustomerAddress, address_id)

    def get_default(self, session: Session, customer_id: uuid.UUID) -> CustomerAddress | None:
        stmt = select(CustomerAddress).where(
            CustomerAddress.customer_id == customer_id,
            CustomerAddress.is_default.is_(True),
        )
        return session.exec(stmt).first()

    def _clear_default(self, session: Session, address: CustomerAddress) -> None:
        session.exec(  # type: ignore[call-overload]
            update(CustomerAddress)
            .where(
                CustomerAddress.customer_id == address.customer_id,
                CustomerAddress.id != address.id,
            )
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )

    def create(self, session: Session, address: CustomerAddress) -> CustomerAddress:
        if address.is_default:
            self._clear_default(session, address)
        session.add(address)
        session.commit()
        session.refresh(address)
        return address

    def update(self, session: Session, address: CustomerAddress) -> CustomerAddress:
        if address.is_default:
            self._clear_default(session, address)
        session.add(address)
        session.commit()
        session.refresh(address)
        return address

    def delete(self, session: Session, address: CustomerAddress) -> None:
        session.delete(address)
        session.commit()
