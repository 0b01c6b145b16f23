# app/services/notifications.py
"""
Push/email notification dispatch for order events.

The emitter hands each new event id to one dispatcher:
  - EdgeFunctionDispatcher: invokes the Supabase Edge Function that owns
    device tokens and push delivery (`notify-order-event`).
  - EmailDispatcher: renders the event template and emails the customer.
  - LogDispatcher: logs only (local development, tests).
"""
import logging
import uuid
from typing import Any, Callable, Protocol

from sqlmodel import Session

from app.core.config import Settings, get_settings
from app.core.email_client import send_email
from app.models.order import Order, OrderEvent
from app.models.user import User

logger = logging.getLogger(__name__)


def _runner_assigned(p: dict[str, Any]) -> str:
    if p.get("runner_name"):
        return f"Your runner is on the way! Meet {p['runner_name']}."
    return "Your runner is on the way! They'll arrive soon."


def _runner_en_route(p: dict[str, Any]) -> str:
    if p.get("eta_seconds"):
        return f"Your runner will arrive in {round(p['eta_seconds'] / 60)} minutes."
    return "Your runner is heading to your location."


def _refund_failed(p: dict[str, Any]) -> str:
    detail = f"Error: {p['error']}" if p.get("error") else "Please contact support."
    return f"There was an issue processing your refund. {detail}"


NOTIFICATION_TEMPLATES: dict[str, tuple[str, Callable[[dict[str, Any]], str]]] = {
    "order_created": (
        "Order placed",
        lambda p: "Your cash delivery request is being processed. "
        "We'll match you with a runner soon.",
    ),
    "runner_assigned": ("Runner assigned", _runner_assigned),
    "runner_en_route": ("Runner on the way", _runner_en_route),
    "runner_arrived": (
        "Runner arrived",
        lambda p: "Your runner has arrived at your location. "
        "Please share your code to complete the handoff.",
    ),
    "otp_verified": (
        "Code verified",
        lambda p: "Handoff in progress. Your runner will complete the delivery shortly.",
    ),
    "handoff_completed": (
        "Delivery completed",
        lambda p: "Your cash delivery is complete! Thank you.",
    ),
    "order_cancelled": (
        "Order cancelled",
        lambda p: "Your order has been cancelled. Refund processing initiated.",
    ),
    "refund_processing": (
        "Refund processing",
        lambda p: "Your refund is being processed. "
        "Funds will be returned to your bank account.",
    ),
    "refund_succeeded": (
        "Refund completed",
        lambda p: "Your refund has been processed. "
        "Funds have been returned to your bank account.",
    ),
    "refund_failed": ("Refund issue", _refund_failed),
}


def render_notification(event_type: str, payload: dict[str, Any] | None) -> tuple[str, str] | None:
    """Return (title, body) for an event type, or None if it has no template."""
    template = NOTIFICATION_TEMPLATES.get(event_type)
    if template is None:
        logger.warning("No notification template for event_type=%s", event_type)
        return None
    title, body = template
    return title, body(payload or {})


class NotificationDispatcher(Protocol):
    def dispatch(self, event_id: uuid.UUID) -> None: ...


class LogDispatcher:
    def dispatch(self, event_id: uuid.UUID) -> None:
        logger.info("Notification dispatch skipped (log channel) for event %s", event_id)


class EdgeFunctionDispatcher:
    """
    Invoke the notification edge function with the event id.

    The function looks the event up itself, so only the id travels.
    """

    def __init__(self, client_factory: Callable[[], Any] | None = None, function_name: str | None = None):
        if client_factory is None:
            from app.core.supabase_client import supabase_admin

            client_factory = supabase_admin
        self.client_factory = client_factory
        self.function_name = function_name or get_settings().NOTIFY_FUNCTION_NAME

    def dispatch(self, event_id: uuid.UUID) -> None:
        client = self.client_factory()
        client.functions.invoke(
            self.function_name,
            invoke_options={"body": {"order_event_id": str(event_id)}},
        )
        logger.info("Notification triggered for order event %s", event_id)


class EmailDispatcher:
    """Render the event template and email it to the order's customer."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sender: Callable[..., None] = send_email,
    ):
        self.session_factory = session_factory
        self.sender = sender

    def dispatch(self, event_id: uuid.UUID) -> None:
        with self.session_factory() as session:
            event = session.get(OrderEvent, event_id)
            if event is None or event.event_type is None:
                logger.warning("Order event %s not found or not notifiable", event_id)
                return
            order = session.get(Order, event.order_id)
            customer = session.get(User, order.customer_id) if order else None
            if customer is None:
                logger.warning("No recipient for order event %s", event_id)
                return
            content = render_notification(event.event_type, event.payload)
            if content is None:
                return
            title, body = content
            self.sender(to_email=customer.email, subject=title, text_body=body)
            logger.info("Notification email sent for order event %s", event_id)


def build_dispatcher(settings: Settings | None = None) -> NotificationDispatcher:
    """Pick the dispatcher configured by NOTIFICATION_CHANNEL."""
    settings = settings or get_settings()
    if settings.NOTIFICATION_CHANNEL == "edge":
        return EdgeFunctionDispatcher(function_name=settings.NOTIFY_FUNCTION_NAME)
    if settings.NOTIFICATION_CHANNEL == "email":
        from app.database import engine

        return EmailDispatcher(session_factory=lambda: Session(engine))
    return LogDispatcher()
