# app/repositories/bank_account_repo.py
import uuid

from sqlmodel import Session, select

from app.models.bank_account import BankAccount


class BankAccountRepository:
    """Read access to linked bank accounts."""

    def list_active_for_customer(
        self,
        session: Session,
        customer_id: uuid.UUID,
    ) -> list[BankAccount]:
        """Linked accounts, excluding soft-disconnected ones, primary first."""
        stmt = (
            select(BankAccount)
            .where(
                BankAccount.customer_id == customer_id,
                BankAccount.disconnected_at.is_(None),
            )
            .order_by(BankAccount.is_primary.desc(), BankAccount.created_at.desc())
        )
        return list(session.exec(stmt).all())
