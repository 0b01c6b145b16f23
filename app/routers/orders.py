# app/routers/orders.py
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from sqlmodel import Session

from app.core.auth import require_admin, require_auth, require_customer, require_runner
from app.database import get_session
from app.models.user import User
from app.repositories.address_repo import AddressRepository
from app.repositories.bank_account_repo import BankAccountRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.user_repo import UserRepository
from app.schemas.order import (
    FeeQuote,
    OrderCancel,
    OrderCreate,
    OrderDetailRead,
    OrderEventRead,
    OrderRating,
    OtpIssued,
    OtpVerify,
    OtpVerifyResult,
    ReorderEligibilityRead,
    RunnerArrived,
)
from app.services.event_service import OrderEventEmitter
from app.services.order_service import OrderService
from app.services.otp_service import OtpVerifier

router = APIRouter(prefix="/orders", tags=["Orders"])

order_repo = OrderRepository()
emitter = OrderEventEmitter()
service = OrderService(
    order_repo,
    UserRepository(),
    AddressRepository(),
    BankAccountRepository(),
    emitter,
    OtpVerifier(order_repo, emitter),
)


# -------- Pricing --------


@router.get("/quote", response_model=FeeQuote)
def quote(amount: float = Query(..., ge=0)):
    """
    Fee breakdown for an amount, before placing an order. Public.
    """
    return service.quote(amount)


# -------- Customer endpoints --------


@router.post("", response_model=OrderDetailRead, status_code=201)
def create_order(
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    """
    Place a cash request.

    Auth:
      - customers only; anonymous callers get 401, other roles 403.
    """
    return service.create_order(
        session, current_user, payload, scheduler=background_tasks.add_task
    )


@router.get("/me", response_model=list[OrderDetailRead])
def list_my_orders(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_auth),
    skip: int = 0,
    limit: int = Query(50, le=200),
):
    """
    Customers: their orders. Runners: orders assigned to them.
    """
    return service.list_my_orders(session, current_user, skip, limit)


@router.get("/{order_id}/otp", response_model=OtpIssued)
def get_handoff_code(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    return service.get_handoff_code(session, current_user, order_id)


@router.post("/{order_id}/rating", response_model=OrderDetailRead)
def rate_order(
    order_id: uuid.UUID,
    payload: OrderRating,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    """
    Rate a completed order once (1-5).
    """
    return service.rate_order(session, current_user, order_id, payload)


@router.get("/{order_id}/reorder-eligibility", response_model=ReorderEligibilityRead)
def reorder_eligibility(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
):
    return service.reorder_eligibility(session, current_user, order_id)


@router.post("/{order_id}/reorder", response_model=OrderDetailRead, status_code=201)
def reorder(
    order_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
    client_request_id: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Repeat a previous order. 400 with {reason, message} when blocked.
    """
    return service.reorder(
        session,
        current_user,
        order_id,
        client_request_id=client_request_id,
        scheduler=background_tasks.add_task,
    )


# -------- Runner endpoints --------


@router.get(
    "/available",
    response_model=list[OrderDetailRead],
    dependencies=[Depends(require_runner)],
)
def list_available_orders(
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = Query(50, le=200),
):
    """
    Pending orders no runner has claimed yet.
    """
    return service.list_available_orders(session, skip, limit)


@router.post("/{order_id}/accept", response_model=OrderDetailRead)
def accept_order(
    order_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_runner),
    client_action_id: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Claim an order. 409 if another runner got it first.
    """
    return service.accept_order(
        session,
        current_user,
        order_id,
        client_action_id,
        scheduler=background_tasks.add_task,
    )


@router.post("/{order_id}/arrive-atm", response_model=OrderDetailRead)
def arrive_at_atm(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_runner),
    client_action_id: str | None = Header(default=None, alias="Idempotency-Key"),
):
    return service.arrive_at_atm(session, current_user, order_id, client_action_id)


@router.post("/{order_id}/withdraw", response_model=OrderDetailRead)
def withdraw_cash(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_runner),
    client_action_id: str | None = Header(default=None, alias="Idempotency-Key"),
):
    return service.withdraw_cash(session, current_user, order_id, client_action_id)


@router.post("/{order_id}/otp", response_model=OrderDetailRead)
def generate_otp(
    order_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_runner),
):
    """
    Issue the handoff code. The customer fetches it with GET /orders/{id}/otp.
    """
    return service.generate_otp(
        session, current_user, order_id, scheduler=background_tasks.add_task
    )


@router.post("/{order_id}/arrived", response_model=RunnerArrived)
def mark_runner_arrived(
    order_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_runner),
):
    return service.mark_runner_arrived(
        session, current_user, order_id, scheduler=background_tasks.add_task
    )


@router.post("/{order_id}/verify-otp", response_model=OtpVerifyResult)
def verify_otp(
    order_id: uuid.UUID,
    payload: OtpVerify,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_runner),
):
    """
    Submit the code the customer read out. Always 200; `verified` tells
    whether the handoff completed.
    """
    return service.verify_otp(
        session,
        current_user,
        order_id,
        payload.code,
        scheduler=background_tasks.add_task,
    )


# -------- Shared endpoints --------


@router.get(
    "",
    response_model=list[OrderDetailRead],
    dependencies=[Depends(require_admin)],
)
def list_all_orders(
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = Query(50, le=200),
):
    """
    List all orders (admin only).
    """
    return service.list_all_orders(session, skip, limit)


@router.get("/{order_id}", response_model=OrderDetailRead)
def get_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_auth),
):
    """
    Customer: own orders. Runner: assigned or still available. Admin: any.
    """
    return service.get_order(session, current_user, order_id)


@router.get("/{order_id}/history", response_model=list[OrderEventRead])
def get_order_history(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_auth),
):
    """
    Audit trail and domain events of an order, oldest first.
    """
    return service.get_history(session, current_user, order_id)


@router.post("/{order_id}/cancel", response_model=OrderDetailRead)
def cancel_order(
    order_id: uuid.UUID,
    payload: OrderCancel,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_auth),
):
    """
    Customers: own orders while Pending / Runner Accepted.
    Admins: any order that is not Completed.
    """
    return service.cancel_order(
        session,
        current_user,
        order_id,
        payload,
        scheduler=background_tasks.add_task,
    )
