# app/routers/bank_accounts.py
from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_customer
from app.database import get_session
from app.models.user import User
from app.repositories.bank_account_repo import BankAccountRepository
from app.schemas.bank_account import BankAccountRead

router = APIRouter(prefix="/bank-accounts", tags=["Bank accounts"])

repo = BankAccountRepository()


@router.get("", response_model=list[BankAccountRead])
def list_bank_accounts(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    """
    The caller's linked accounts, primary first.

    Linking and unlinking happen in the bank-link integration; this
    service only reads the result.
    """
    return repo.list_active_for_customer(session, current_user.id)
