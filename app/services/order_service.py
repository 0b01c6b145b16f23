# app/services/order_service.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlmodel import Session

from app.models.order import Order
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
    OtpVerifyResult,
    ReorderEligibilityRead,
    RunnerArrived,
)
from app.schemas.user import PartySummary
from app.services.address_service import create_address_snapshot, format_address
from app.services.event_service import RUNNER_ARRIVED, OrderEventEmitter, TaskScheduler
from app.services.order_status import (
    CANCELLED,
    CASH_WITHDRAWN,
    COMPLETED,
    PENDING,
    PENDING_HANDOFF,
    RUNNER_ACCEPTED,
    RUNNER_AT_ATM,
)
from app.services.otp_service import OtpVerifier
from app.services.pricing import InvalidAmount, calculate_fees, validate_request_amount
from app.services.reorder import ReorderEligibility, validate_reorder_eligibility

logger = logging.getLogger(__name__)

# Customers may only cancel before the runner heads to the ATM
CUSTOMER_CANCELLABLE = (PENDING, RUNNER_ACCEPTED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderService:
    """
    Business logic for cash delivery orders.

    Responsibilities:
      - create orders (amount limits, daily limit, fees, address snapshot)
      - runner workflow: accept -> at ATM -> withdrawn -> handoff code
        -> arrived -> verify code
      - cancellation and rating rules per role
      - attach customer/runner summaries to reads
      - emit order events for notifications
      - reorder eligibility and reorder

    Repository sentinels are mapped to HTTP errors here:
      False on a transition -> 409, None on create -> 503.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        user_repo: UserRepository,
        address_repo: AddressRepository,
        bank_account_repo: BankAccountRepository,
        emitter: OrderEventEmitter,
        otp_verifier: OtpVerifier,
    ):
        self.order_repo = order_repo
        self.user_repo = user_repo
        self.address_repo = address_repo
        self.bank_account_repo = bank_account_repo
        self.emitter = emitter
        self.otp_verifier = otp_verifier

    # -------- Internal helpers --------

    def _get_order(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get_order_by_id(session, order_id)
        if not order:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Order not found",
            )
        return order

    def _can_view(self, order: Order, user: User) -> bool:
        if user.role == "admin":
            return True
        if user.role == "customer":
            return order.customer_id == user.id
        if user.role == "runner":
            if order.runner_id == user.id:
                return True
            return order.status == PENDING and order.runner_id is None
        return False

    def _get_visible_order(self, session: Session, user: User, order_id: uuid.UUID) -> Order:
        order = self._get_order(session, order_id)
        if not self._can_view(order, user):
            # Same answer as a missing order; ids are not confirmed to outsiders
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Order not found",
            )
        return order

    def _get_owned_order(self, session: Session, customer: User, order_id: uuid.UUID) -> Order:
        order = self._get_order(session, order_id)
        if order.customer_id != customer.id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Order not found",
            )
        return order

    def _get_assigned_order(self, session: Session, runner: User, order_id: uuid.UUID) -> Order:
        order = self._get_order(session, order_id)
        if order.runner_id != runner.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the assigned runner can update this order",
            )
        return order

    def _summary(self, user: User | None) -> PartySummary | None:
        if user is None:
            return None
        return PartySummary(id=user.id, name=user.name, role=user.role)

    def _to_details(self, session: Session, orders: list[Order]) -> list[OrderDetailRead]:
        ids = {o.customer_id for o in orders} | {o.runner_id for o in orders if o.runner_id}
        parties = self.user_repo.get_many(session, ids)
        result = []
        for order in orders:
            arrived = order.status == PENDING_HANDOFF and self.emitter.has_event(
                session, order.id, RUNNER_ARRIVED
            )
            data: dict[str, Any] = order.model_dump()
            data.update(
                customer=self._summary(parties.get(order.customer_id)),
                runner=self._summary(parties.get(order.runner_id)) if order.runner_id else None,
                runner_arrived=arrived,
            )
            result.append(OrderDetailRead.model_validate(data))
        return result

    def _to_detail(self, session: Session, order: Order) -> OrderDetailRead:
        return self._to_details(session, [order])[0]

    def _reload(self, session: Session, order_id: uuid.UUID) -> OrderDetailRead:
        return self._to_detail(session, self._get_order(session, order_id))

    def _ensure_daily_capacity(self, session: Session, customer: User, amount: float) -> None:
        """
        Zero `daily_usage` on the first request of a new UTC day, then
        check the new amount fits under `daily_limit`.
        """
        now = _utcnow()
        last_reset = customer.daily_usage_reset_at
        if last_reset is not None and last_reset.tzinfo is None:
            last_reset = last_reset.replace(tzinfo=timezone.utc)
        if last_reset is None or last_reset.date() < now.date():
            customer.daily_usage = 0.0
            customer.daily_usage_reset_at = now
            self.user_repo.update(session, customer)

        if customer.daily_usage + amount > customer.daily_limit:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Daily limit exceeded",
            )

    # -------- Pricing --------

    def quote(self, amount: float) -> FeeQuote:
        try:
            fees = calculate_fees(amount)
        except InvalidAmount as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(exc),
            )
        return FeeQuote(**fees.as_order_fields())

    # -------- Customer operations --------

    def create_order(
        self,
        session: Session,
        customer: User | None,
        payload: OrderCreate,
        scheduler: TaskScheduler | None = None,
        address_snapshot: dict[str, Any] | None = None,
    ) -> OrderDetailRead:
        """
        Create a Pending order for the caller.

        Steps:
          1. Fail closed without an authenticated customer.
          2. Check amount limits and the daily limit.
          3. Resolve the saved address (must be the caller's) and freeze
             a snapshot of it.
          4. Compute fees and insert; a repeated client_request_id returns
             the existing order.
          5. Emit order_created for new orders only.
        """
        if customer is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
            )

        error = validate_request_amount(payload.requested_amount)
        if error:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=error,
            )

        if payload.client_request_id:
            existing = self.order_repo.get_by_client_request_id(
                session, customer.id, payload.client_request_id
            )
            if existing is not None:
                return self._to_detail(session, existing)

        self._ensure_daily_capacity(session, customer, payload.requested_amount)

        display_address = payload.customer_address
        if payload.address_id is not None:
            address = self.address_repo.get_by_id(session, payload.address_id)
            if not address or address.customer_id != customer.id:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Address not found",
                )
            address_snapshot = create_address_snapshot(address)
            display_address = display_address or format_address(address)
        elif address_snapshot is not None:
            display_address = display_address or format_address(address_snapshot)

        fees = calculate_fees(payload.requested_amount)
        order = Order(
            customer_id=customer.id,
            **fees.as_order_fields(),
            customer_address=display_address or "",
            customer_name=customer.name or "Customer",
            customer_notes=payload.customer_notes,
            address_id=payload.address_id,
            address_snapshot=address_snapshot,
            delivery_style=payload.delivery_style,
            client_request_id=payload.client_request_id,
        )

        created = self.order_repo.create_order(session, order)
        if created is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not create order, please try again",
            )

        if created is order:
            logger.info(
                "Order %s created for customer %s (amount=%.2f)",
                created.id,
                customer.id,
                created.requested_amount,
            )
            self.emitter.emit_order_created(
                session, created.id, created.requested_amount, scheduler=scheduler
            )
        return self._to_detail(session, created)

    def get_handoff_code(
        self,
        session: Session,
        customer: User,
        order_id: uuid.UUID,
    ) -> OtpIssued:
        """
        The customer reads the code to the runner in person; only the
        order's customer can fetch it.
        """
        order = self._get_owned_order(session, customer, order_id)
        if order.status != PENDING_HANDOFF or not order.otp_code or not order.otp_expires_at:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No active handoff code",
            )
        return OtpIssued(order_id=order.id, code=order.otp_code, expires_at=order.otp_expires_at)

    def cancel_order(
        self,
        session: Session,
        user: User,
        order_id: uuid.UUID,
        payload: OrderCancel,
        scheduler: TaskScheduler | None = None,
    ) -> OrderDetailRead:
        """
        Rules:
          - customers: own orders, only while Pending or Runner Accepted
          - admins: any non-terminal order
          - runners cannot cancel
          - Completed orders cannot be cancelled (409)
          - cancelling a Cancelled order returns it unchanged
        """
        order = self._get_visible_order(session, user, order_id)

        if order.status == COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot cancel a completed order",
            )
        if order.status == CANCELLED:
            return self._to_detail(session, order)

        if user.role == "customer":
            if order.status not in CUSTOMER_CANCELLABLE:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Cannot cancel order at this stage",
                )
        elif user.role != "admin":
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only customers and admins can cancel orders",
            )

        ok = self.order_repo.cancel_order(
            session,
            order_id,
            payload.reason,
            cancelled_by=user.id,
            actor_role=user.role,
        )
        if not ok:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot cancel order at this stage",
            )

        logger.info("Order %s cancelled by %s %s", order_id, user.role, user.id)
        self.emitter.emit_order_cancelled(session, order_id, payload.reason, scheduler=scheduler)
        return self._reload(session, order_id)

    def rate_order(
        self,
        session: Session,
        customer: User,
        order_id: uuid.UUID,
        payload: OrderRating,
    ) -> OrderDetailRead:
        order = self._get_owned_order(session, customer, order_id)
        if order.status != COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only completed orders can be rated",
            )
        if order.rating is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order already rated",
            )
        if not self.order_repo.rate_order(
            session, order_id, customer.id, payload.rating, payload.comment
        ):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order already rated",
            )
        return self._reload(session, order_id)

    # -------- Runner operations --------

    def accept_order(
        self,
        session: Session,
        runner: User,
        order_id: uuid.UUID,
        client_action_id: str | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> OrderDetailRead:
        order = self._get_order(session, order_id)
        if order.runner_id == runner.id and order.status != PENDING:
            return self._to_detail(session, order)
        if order.status != PENDING or order.runner_id is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order has already been accepted by another runner",
            )

        if not self.order_repo.accept_order(session, order_id, runner.id, client_action_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order is no longer available. It may have been accepted by another runner.",
            )

        logger.info("Order %s accepted by runner %s", order_id, runner.id)
        self.emitter.emit_runner_assigned(
            session, order_id, runner.id, runner.name, scheduler=scheduler
        )
        return self._reload(session, order_id)

    def _advance(
        self,
        session: Session,
        runner: User,
        order_id: uuid.UUID,
        target: str,
        client_action_id: str | None = None,
    ) -> OrderDetailRead:
        order = self._get_assigned_order(session, runner, order_id)
        ok = self.order_repo.update_order_status(
            session,
            order_id,
            target,
            actor_id=runner.id,
            actor_role="runner",
            client_action_id=client_action_id,
        )
        if not ok:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot move order from {order.status} to {target}",
            )
        return self._reload(session, order_id)

    def arrive_at_atm(
        self,
        session: Session,
        runner: User,
        order_id: uuid.UUID,
        client_action_id: str | None = None,
    ) -> OrderDetailRead:
        return self._advance(session, runner, order_id, RUNNER_AT_ATM, client_action_id)

    def withdraw_cash(
        self,
        session: Session,
        runner: User,
        order_id: uuid.UUID,
        client_action_id: str | None = None,
    ) -> OrderDetailRead:
        return self._advance(session, runner, order_id, CASH_WITHDRAWN, client_action_id)

    def generate_otp(
        self,
        session: Session,
        runner: User,
        order_id: uuid.UUID,
        scheduler: TaskScheduler | None = None,
    ) -> OrderDetailRead:
        """
        Issue the handoff code and move the order to Pending Handoff.

        The code goes to the customer (see get_handoff_code), never back
        to the runner.
        """
        order = self._get_assigned_order(session, runner, order_id)
        if order.status not in (CASH_WITHDRAWN, PENDING_HANDOFF):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Handoff code can only be issued after cash is withdrawn",
            )
        first_issue = order.status == CASH_WITHDRAWN
        if self.otp_verifier.generate_otp(session, order_id, actor_id=runner.id) is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Could not issue handoff code",
            )
        if first_issue:
            self.emitter.emit_runner_en_route(session, order_id, scheduler=scheduler)
        return self._reload(session, order_id)

    def mark_runner_arrived(
        self,
        session: Session,
        runner: User,
        order_id: uuid.UUID,
        scheduler: TaskScheduler | None = None,
    ) -> RunnerArrived:
        """
        Record arrival at the customer. Status stays Pending Handoff; the
        runner_arrived event is the marker. Repeating the call is a no-op.
        """
        order = self._get_assigned_order(session, runner, order_id)
        if order.status != PENDING_HANDOFF:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Can only mark arrival when status is Pending Handoff",
            )
        if not self.is_runner_arrived(session, order_id):
            result = self.emitter.emit_runner_arrived(session, order_id, scheduler=scheduler)
            if not result.success:
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="Could not record arrival, please try again",
                )
        return RunnerArrived(order_id=order_id, runner_arrived=True)

    def is_runner_arrived(self, session: Session, order_id: uuid.UUID) -> bool:
        return self.emitter.has_event(session, order_id, RUNNER_ARRIVED)

    def verify_otp(
        self,
        session: Session,
        runner: User,
        order_id: uuid.UUID,
        code: str,
        scheduler: TaskScheduler | None = None,
    ) -> OtpVerifyResult:
        """
        Check the code the customer read out. A wrong, expired or locked
        code answers `verified=False` with no further detail.
        """
        self._get_assigned_order(session, runner, order_id)
        verified = self.otp_verifier.verify_otp(
            session, order_id, code, actor_id=runner.id, scheduler=scheduler
        )
        if verified:
            logger.info("Order %s completed by runner %s", order_id, runner.id)
        return OtpVerifyResult(verified=verified)

    # -------- Reads --------

    def get_order(self, session: Session, user: User, order_id: uuid.UUID) -> OrderDetailRead:
        return self._to_detail(session, self._get_visible_order(session, user, order_id))

    def list_my_orders(
        self,
        session: Session,
        user: User,
        skip: int = 0,
        limit: int = 50,
    ) -> list[OrderDetailRead]:
        """A customer's own orders, or the orders assigned to a runner."""
        if user.role == "runner":
            orders = self.order_repo.get_runner_orders(session, user.id, skip, limit)
        else:
            orders = self.order_repo.get_customer_orders(session, user.id, skip, limit)
        return self._to_details(session, orders)

    def list_available_orders(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
    ) -> list[OrderDetailRead]:
        return self._to_details(
            session, self.order_repo.get_available_orders(session, skip, limit)
        )

    def list_all_orders(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
    ) -> list[OrderDetailRead]:
        return self._to_details(session, self.order_repo.get_all_orders(session, skip, limit))

    def get_history(
        self,
        session: Session,
        user: User,
        order_id: uuid.UUID,
    ) -> list[OrderEventRead]:
        order = self._get_visible_order(session, user, order_id)
        return [
            OrderEventRead.model_validate(event.model_dump())
            for event in self.emitter.history(session, order.id)
        ]

    # -------- Reorder --------

    def _check_reorder(
        self,
        session: Session,
        customer: User,
        order: Order,
    ) -> ReorderEligibility:
        addresses = self.address_repo.list_for_customer(session, customer.id)
        bank_accounts = self.bank_account_repo.list_active_for_customer(session, customer.id)
        runner = self.user_repo.get_by_id(session, order.runner_id) if order.runner_id else None
        return validate_reorder_eligibility(
            customer,
            addresses,
            order,
            bank_accounts,
            previous_runner=runner,
        )

    def reorder_eligibility(
        self,
        session: Session,
        customer: User,
        order_id: uuid.UUID,
    ) -> ReorderEligibilityRead:
        order = self._get_owned_order(session, customer, order_id)
        result = self._check_reorder(session, customer, order)
        return ReorderEligibilityRead(ok=result.ok, reason=result.reason, message=result.message)

    def reorder(
        self,
        session: Session,
        customer: User,
        order_id: uuid.UUID,
        client_request_id: str | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> OrderDetailRead:
        """
        Place a new order with the amount, address and delivery style of
        a previous one. Blocked reorders answer 400 with reason/message.
        """
        previous = self._get_owned_order(session, customer, order_id)
        result = self._check_reorder(session, customer, previous)
        if not result.ok:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"reason": result.reason, "message": result.message},
            )

        saved_ids = {a.id for a in self.address_repo.list_for_customer(session, customer.id)}
        address_id = previous.address_id if previous.address_id in saved_ids else None
        payload = OrderCreate(
            requested_amount=previous.requested_amount,
            customer_address=previous.customer_address,
            address_id=address_id,
            customer_notes=previous.customer_notes,
            delivery_style=previous.delivery_style,
            client_request_id=client_request_id,
        )
        return self.create_order(
            session,
            customer,
            payload,
            scheduler=scheduler,
            address_snapshot=None if address_id else previous.address_snapshot,
        )
