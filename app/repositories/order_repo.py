# app/repositories/order_repo.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.config import get_settings
from app.models.order import Order, OrderEvent
from app.models.user import User
from app.services.order_status import (
    CANCELLED,
    CASH_WITHDRAWN,
    COMPLETED,
    MILESTONE_TIMESTAMPS,
    PENDING,
    PENDING_HANDOFF,
    RUNNER_ACCEPTED,
    can_transition,
    is_terminal,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns a caller may never set through `extra` on a status update
_PROTECTED_COLUMNS = frozenset(
    {"id", "customer_id", "status", "version", "created_at", "updated_at"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderRepository:
    """
    Data access layer for orders and their status transitions.

    Rules:
      - Every status change is a conditional UPDATE guarded by the status
        the caller observed (`WHERE status = :current`). If another writer
        got there first the UPDATE matches no row and the method returns
        False; nothing is overwritten.
      - A successful transition writes an `order_events` audit row in the
        same transaction, bumps `version` and stamps the milestone column.
      - Database errors are logged here and converted to False / None / []
        so callers never see raw driver exceptions.
    """

    def __init__(self, write_attempts: int | None = None):
        if write_attempts is None:
            write_attempts = get_settings().WRITE_RETRY_ATTEMPTS
        self.write_attempts = max(1, write_attempts)

    # ---- Plumbing ----

    def _write(self, session: Session, action: str, op: Callable[[], T]) -> T | None:
        """
        Run `op` and commit. Transient errors are retried; a failed attempt
        is rolled back in full before the next one.
        """
        for attempt in range(1, self.write_attempts + 1):
            try:
                result = op()
                session.commit()
                return result
            except OperationalError:
                session.rollback()
                if attempt < self.write_attempts:
                    logger.warning(
                        "%s: transient database error, retrying (%d/%d)",
                        action,
                        attempt,
                        self.write_attempts,
                    )
                    continue
                logger.exception("%s failed after %d attempts", action, attempt)
            except SQLAlchemyError:
                session.rollback()
                logger.exception("%s failed", action)
                break
        return None

    def _read(self, session: Session, action: str, op: Callable[[], T], default: T) -> T:
        try:
            return op()
        except SQLAlchemyError:
            session.rollback()
            logger.exception("%s failed", action)
            return default

    def _current_status(self, session: Session, order_id: uuid.UUID) -> str | None:
        stmt = select(Order.status).where(Order.id == order_id)
        return session.exec(stmt).first()

    def _action_recorded(
        self,
        session: Session,
        order_id: uuid.UUID,
        client_action_id: str | None,
        target: str,
        actor_id: uuid.UUID | None,
    ) -> bool:
        """Whether this actor already moved the order to `target` under this key."""
        if not client_action_id:
            return False
        stmt = select(OrderEvent.id).where(
            OrderEvent.order_id == order_id,
            OrderEvent.client_action_id == client_action_id,
            OrderEvent.to_status == target,
            OrderEvent.actor_id == actor_id,
        )
        return self._read(
            session,
            "action_recorded",
            lambda: session.exec(stmt).first() is not None,
            False,
        )

    def _apply_transition(
        self,
        session: Session,
        order_id: uuid.UUID,
        current: str,
        target: str,
        *,
        values: dict[str, Any] | None = None,
        extra_where: tuple = (),
        actor_id: uuid.UUID | None = None,
        actor_role: str | None = None,
        client_action_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Conditionally move one order from `current` to `target`.

        Does not commit; runs inside `_write`.
        """
        if not can_transition(current, target):
            return False

        now = _utcnow()
        changes: dict[str, Any] = dict(values or {})
        changes["status"] = target
        changes["updated_at"] = now
        changes["version"] = Order.version + 1
        stamp = MILESTONE_TIMESTAMPS.get(target)
        if stamp:
            changes.setdefault(stamp, now)

        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == current, *extra_where)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        result = session.exec(stmt)  # type: ignore[call-overload]
        if result.rowcount != 1:
            return False

        session.add(
            OrderEvent(
                order_id=order_id,
                from_status=current,
                to_status=target,
                actor_id=actor_id,
                actor_role=actor_role,
                client_action_id=client_action_id,
                event_metadata=metadata or {},
            )
        )
        session.flush()
        return True

    # ---- Create ----

    def get_by_client_request_id(
        self,
        session: Session,
        customer_id: uuid.UUID,
        client_request_id: str,
    ) -> Order | None:
        stmt = select(Order).where(
            Order.customer_id == customer_id,
            Order.client_request_id == client_request_id,
        )
        return self._read(
            session, "get_by_client_request_id", lambda: session.exec(stmt).first(), None
        )

    def create_order(self, session: Session, order: Order) -> Order | None:
        """
        Insert a new Pending order and add its amount to the customer's
        daily usage, in one transaction.

        A create retried with the same `client_request_id` returns the
        order that was already stored.
        """
        if order.client_request_id:
            existing = self.get_by_client_request_id(
                session, order.customer_id, order.client_request_id
            )
            if existing is not None:
                return existing

        def op() -> Order:
            order.status = PENDING
            session.add(order)
            session.flush()  # Assign PK
            session.add(
                OrderEvent(
                    order_id=order.id,
                    from_status=None,
                    to_status=PENDING,
                    actor_id=order.customer_id,
                    actor_role="customer",
                )
            )
            session.exec(  # type: ignore[call-overload]
                update(User)
                .where(User.id == order.customer_id)
                .values(daily_usage=User.daily_usage + order.requested_amount)
                .execution_options(synchronize_session=False)
            )
            return order

        created = self._write(session, "create_order", op)
        if created is not None:
            session.refresh(created)
        return created

    # ---- Transitions ----

    def accept_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        runner_id: uuid.UUID,
        client_action_id: str | None = None,
    ) -> bool:
        """
        Pending -> Runner Accepted, claiming the order for `runner_id`.

        Only succeeds while the order is still Pending and unassigned, so
        among concurrent callers exactly one wins.
        """
        if self._action_recorded(
            session, order_id, client_action_id, RUNNER_ACCEPTED, runner_id
        ):
            return True

        def op() -> bool:
            return self._apply_transition(
                session,
                order_id,
                PENDING,
                RUNNER_ACCEPTED,
                values={"runner_id": runner_id},
                extra_where=(Order.runner_id.is_(None),),
                actor_id=runner_id,
                actor_role="runner",
                client_action_id=client_action_id,
                metadata={"accepted_by": str(runner_id)},
            )

        return bool(self._write(session, "accept_order", op))

    def update_order_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        new_status: str,
        extra: dict[str, Any] | None = None,
        *,
        actor_id: uuid.UUID | None = None,
        actor_role: str | None = None,
        client_action_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Generic forward transition with milestone stamping.

        Returns False if the order does not exist, if `new_status` is not
        reachable from its current status, or if the status changed
        underneath us.
        """
        if self._action_recorded(
            session, order_id, client_action_id, new_status, actor_id
        ):
            return True

        values = {
            key: value
            for key, value in (extra or {}).items()
            if key not in _PROTECTED_COLUMNS and key in Order.model_fields
        }

        def op() -> bool:
            current = self._current_status(session, order_id)
            if current is None:
                return False
            return self._apply_transition(
                session,
                order_id,
                current,
                new_status,
                values=values,
                actor_id=actor_id,
                actor_role=actor_role,
                client_action_id=client_action_id,
                metadata=metadata,
            )

        return bool(self._write(session, "update_order_status", op))

    def cancel_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        reason: str,
        *,
        cancelled_by: uuid.UUID | None = None,
        actor_role: str | None = None,
    ) -> bool:
        """
        Move any non-terminal order to Cancelled.

        Cancelling an already-cancelled order reports success and keeps the
        original `cancelled_at` / `cancellation_reason`. Completed orders
        cannot be cancelled.
        """

        def op() -> bool:
            current = self._current_status(session, order_id)
            if current is None:
                return False
            if current == CANCELLED:
                return True
            if is_terminal(current):
                return False
            return self._apply_transition(
                session,
                order_id,
                current,
                CANCELLED,
                values={
                    "cancellation_reason": reason,
                    "cancelled_by": cancelled_by,
                    "otp_code": None,
                    "otp_expires_at": None,
                },
                actor_id=cancelled_by,
                actor_role=actor_role,
                metadata={"reason": reason},
            )

        ok = bool(self._write(session, "cancel_order", op))
        if not ok:
            # Lost a race against another cancel: still a success.
            ok = self._read(
                session,
                "cancel_order.recheck",
                lambda: self._current_status(session, order_id) == CANCELLED,
                False,
            )
        return ok

    # ---- OTP persistence ----

    def store_otp(
        self,
        session: Session,
        order_id: uuid.UUID,
        code: str,
        expires_at: datetime,
        *,
        actor_id: uuid.UUID | None = None,
    ) -> bool:
        """
        Save a fresh handoff code and reset the attempt counter.

        From Cash Withdrawn this also moves the order to Pending Handoff in
        the same write. While already Pending Handoff it replaces the
        previous code.
        """
        otp_values = {
            "otp_code": code,
            "otp_expires_at": expires_at,
            "otp_attempts": 0,
            "otp_verified_at": None,
        }

        def op() -> bool:
            current = self._current_status(session, order_id)
            if current == CASH_WITHDRAWN:
                return self._apply_transition(
                    session,
                    order_id,
                    CASH_WITHDRAWN,
                    PENDING_HANDOFF,
                    values=otp_values,
                    actor_id=actor_id,
                    actor_role="runner",
                    metadata={"action": "generate_otp"},
                )
            if current == PENDING_HANDOFF:
                stmt = (
                    update(Order)
                    .where(Order.id == order_id, Order.status == PENDING_HANDOFF)
                    .values(
                        **otp_values,
                        updated_at=_utcnow(),
                        version=Order.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                return session.exec(stmt).rowcount == 1  # type: ignore[call-overload]
            return False

        return bool(self._write(session, "store_otp", op))

    def record_failed_otp_attempt(
        self,
        session: Session,
        order_id: uuid.UUID,
        max_attempts: int,
    ) -> bool:
        """Atomically increment `otp_attempts` while below `max_attempts`."""

        def op() -> bool:
            stmt = (
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == PENDING_HANDOFF,
                    Order.otp_attempts < max_attempts,
                )
                .values(
                    otp_attempts=Order.otp_attempts + 1,
                    updated_at=_utcnow(),
                    version=Order.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            return session.exec(stmt).rowcount == 1  # type: ignore[call-overload]

        return bool(self._write(session, "record_failed_otp_attempt", op))

    def complete_handoff(
        self,
        session: Session,
        order_id: uuid.UUID,
        code: str,
        max_attempts: int,
        *,
        actor_id: uuid.UUID | None = None,
    ) -> bool:
        """
        Pending Handoff -> Completed, guarded by the stored code and the
        attempt counter so a concurrent wrong guess cannot be overtaken.
        """
        now = _utcnow()

        def op() -> bool:
            return self._apply_transition(
                session,
                order_id,
                PENDING_HANDOFF,
                COMPLETED,
                values={
                    "otp_verified_at": now,
                    "otp_code": None,
                    "otp_expires_at": None,
                },
                extra_where=(
                    Order.otp_code == code,
                    Order.otp_attempts < max_attempts,
                ),
                actor_id=actor_id,
                actor_role="runner",
                metadata={"action": "verify_otp", "otp_verified": True},
            )

        return bool(self._write(session, "complete_handoff", op))

    # ---- Rating ----

    def rate_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        customer_id: uuid.UUID,
        rating: int,
        comment: str | None,
    ) -> bool:
        """Set the rating once on a Completed order owned by the customer."""

        def op() -> bool:
            stmt = (
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.customer_id == customer_id,
                    Order.status == COMPLETED,
                    Order.rating.is_(None),
                )
                .values(
                    rating=rating,
                    rating_comment=comment,
                    rating_submitted_at=_utcnow(),
                    updated_at=_utcnow(),
                    version=Order.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            return session.exec(stmt).rowcount == 1  # type: ignore[call-overload]

        return bool(self._write(session, "rate_order", op))

    # ---- Queries ----

    def get_order_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        # Conditional writes skip session sync, so always reload the row
        return self._read(
            session,
            "get_order_by_id",
            lambda: session.get(Order, order_id, populate_existing=True),
            None,
        )

    def get_customer_orders(
        self,
        session: Session,
        customer_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return self._read(
            session, "get_customer_orders", lambda: list(session.exec(stmt).all()), []
        )

    def get_runner_orders(
        self,
        session: Session,
        runner_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.runner_id == runner_id)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return self._read(
            session, "get_runner_orders", lambda: list(session.exec(stmt).all()), []
        )

    def get_available_orders(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        """Unclaimed orders: Pending with no runner."""
        stmt = (
            select(Order)
            .where(Order.status == PENDING, Order.runner_id.is_(None))
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return self._read(
            session, "get_available_orders", lambda: list(session.exec(stmt).all()), []
        )

    def get_all_orders(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        stmt = select(Order).order_by(Order.created_at.desc()).offset(skip).limit(limit)
        return self._read(
            session, "get_all_orders", lambda: list(session.exec(stmt).all()), []
        )
