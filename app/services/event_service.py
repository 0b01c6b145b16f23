# app/services/event_service.py
"""
Order event emitter.

Responsibilities:
  - append a domain event row (`order_events.event_type` + payload)
  - hand the new event id to the notification dispatcher as a background
    task; a failed dispatch is logged and counted, the caller still gets
    a successful result because the event itself was stored

Events are not status transitions: `runner_arrived` for example is
recorded while the order stays Pending Handoff, and `has_event` is how
that sub-state is detected.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.models.order import OrderEvent
from app.repositories.event_repo import OrderEventRepository
from app.services.notifications import NotificationDispatcher, build_dispatcher

logger = logging.getLogger(__name__)

ORDER_CREATED = "order_created"
RUNNER_ASSIGNED = "runner_assigned"
RUNNER_EN_ROUTE = "runner_en_route"
RUNNER_ARRIVED = "runner_arrived"
OTP_VERIFIED = "otp_verified"
HANDOFF_COMPLETED = "handoff_completed"
ORDER_CANCELLED = "order_cancelled"
REFUND_PROCESSING = "refund_processing"
REFUND_SUCCEEDED = "refund_succeeded"
REFUND_FAILED = "refund_failed"

EVENT_TYPES: frozenset[str] = frozenset(
    {
        ORDER_CREATED,
        RUNNER_ASSIGNED,
        RUNNER_EN_ROUTE,
        RUNNER_ARRIVED,
        OTP_VERIFIED,
        HANDOFF_COMPLETED,
        ORDER_CANCELLED,
        REFUND_PROCESSING,
        REFUND_SUCCEEDED,
        REFUND_FAILED,
    }
)

# Same shape as fastapi.BackgroundTasks.add_task
TaskScheduler = Callable[..., Any]


def run_inline(func: Callable[..., Any], *args: Any) -> None:
    func(*args)


@dataclass(frozen=True)
class EmitResult:
    success: bool
    event_id: uuid.UUID | None = None


class OrderEventEmitter:
    def __init__(
        self,
        event_repo: OrderEventRepository | None = None,
        dispatcher: NotificationDispatcher | None = None,
        scheduler: TaskScheduler = run_inline,
    ):
        self.event_repo = event_repo or OrderEventRepository()
        self.dispatcher = dispatcher or build_dispatcher()
        self.scheduler = scheduler
        self.failed_dispatches = 0

    def _dispatch(self, event_id: uuid.UUID) -> None:
        try:
            self.dispatcher.dispatch(event_id)
        except Exception:
            self.failed_dispatches += 1
            logger.exception("Notification dispatch failed for order event %s", event_id)

    def emit_order_event(
        self,
        session: Session,
        order_id: uuid.UUID,
        event_type: str,
        payload: dict[str, Any] | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> EmitResult:
        """
        Store one event and schedule its notification.

        `scheduler` overrides the default for one call; request handlers
        pass `BackgroundTasks.add_task` so dispatch runs after the response.
        """
        if event_type not in EVENT_TYPES:
            logger.error("Rejected unknown order event type %r", event_type)
            return EmitResult(success=False)

        try:
            event = self.event_repo.insert(
                session,
                OrderEvent(order_id=order_id, event_type=event_type, payload=payload or {}),
            )
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to store %s event for order %s", event_type, order_id)
            return EmitResult(success=False)

        (scheduler or self.scheduler)(self._dispatch, event.id)
        return EmitResult(success=True, event_id=event.id)

    # ---- Typed helpers ----

    def emit_order_created(self, session: Session, order_id: uuid.UUID, amount: float, **kw) -> EmitResult:
        return self.emit_order_event(session, order_id, ORDER_CREATED, {"amount": amount}, **kw)

    def emit_runner_assigned(
        self,
        session: Session,
        order_id: uuid.UUID,
        runner_id: uuid.UUID,
        runner_name: str | None = None,
        **kw,
    ) -> EmitResult:
        payload = {"runner_id": str(runner_id), "runner_name": runner_name}
        return self.emit_order_event(session, order_id, RUNNER_ASSIGNED, payload, **kw)

    def emit_runner_en_route(
        self,
        session: Session,
        order_id: uuid.UUID,
        eta_seconds: int | None = None,
        **kw,
    ) -> EmitResult:
        return self.emit_order_event(
            session, order_id, RUNNER_EN_ROUTE, {"eta_seconds": eta_seconds}, **kw
        )

    def emit_runner_arrived(self, session: Session, order_id: uuid.UUID, **kw) -> EmitResult:
        return self.emit_order_event(session, order_id, RUNNER_ARRIVED, {}, **kw)

    def emit_otp_verified(self, session: Session, order_id: uuid.UUID, **kw) -> EmitResult:
        return self.emit_order_event(session, order_id, OTP_VERIFIED, {}, **kw)

    def emit_handoff_completed(self, session: Session, order_id: uuid.UUID, **kw) -> EmitResult:
        return self.emit_order_event(session, order_id, HANDOFF_COMPLETED, {}, **kw)

    def emit_order_cancelled(
        self,
        session: Session,
        order_id: uuid.UUID,
        reason: str | None = None,
        **kw,
    ) -> EmitResult:
        return self.emit_order_event(session, order_id, ORDER_CANCELLED, {"reason": reason}, **kw)

    def emit_refund_processing(self, session: Session, order_id: uuid.UUID, **kw) -> EmitResult:
        return self.emit_order_event(session, order_id, REFUND_PROCESSING, {}, **kw)

    def emit_refund_succeeded(self, session: Session, order_id: uuid.UUID, **kw) -> EmitResult:
        return self.emit_order_event(session, order_id, REFUND_SUCCEEDED, {}, **kw)

    def emit_refund_failed(
        self,
        session: Session,
        order_id: uuid.UUID,
        error: str | None = None,
        **kw,
    ) -> EmitResult:
        return self.emit_order_event(session, order_id, REFUND_FAILED, {"error": error}, **kw)

    # ---- Reads ----

    def has_event(self, session: Session, order_id: uuid.UUID, event_type: str) -> bool:
        try:
            return self.event_repo.has_event(session, order_id, event_type)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("has_event lookup failed for order %s", order_id)
            return False

    def history(self, session: Session, order_id: uuid.UUID) -> list[OrderEvent]:
        try:
            return self.event_repo.list_for_order(session, order_id)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("History lookup failed for order %s", order_id)
            return []
