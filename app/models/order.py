# app/models/order.py
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(SQLModel, table=True):
    """
    Cash delivery order.

    Lifecycle (see app/services/order_status.py):
      Pending -> Runner Accepted -> Runner at ATM -> Cash Withdrawn
        -> Pending Handoff -> Completed
      any non-terminal status -> Cancelled

    `version` increases by one on every write so realtime consumers can
    discard change events that arrive out of order.
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    customer_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
    )
    runner_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="users.id",
        index=True,
        description="Assigned once a runner accepts the order",
    )

    # ---- Money (stored rounded to cents) ----
    requested_amount: float
    profit: float
    compliance_fee: float
    delivery_fee: float
    total_service_fee: float
    total_payment: float

    status: str = Field(
        default="Pending",
        index=True,
        description="Order status lifecycle",
    )

    # ---- Delivery target ----
    customer_address: str = Field(
        description="Display address as typed/selected by the customer",
    )
    customer_name: str = Field(default="Customer")
    customer_notes: str | None = None

    # Live reference; the address row may later be edited or deleted
    address_id: uuid.UUID | None = Field(default=None, index=True)
    # Frozen copy taken at creation time; the binding delivery target
    address_snapshot: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )

    # SPEED | COUNTED
    delivery_style: str = Field(default="SPEED")

    # Idempotency key for retried create requests
    client_request_id: str | None = Field(default=None, index=True)

    # ---- Handoff OTP (only meaningful while Pending Handoff) ----
    otp_code: str | None = None
    otp_expires_at: datetime | None = None
    otp_attempts: int = Field(default=0)
    otp_verified_at: datetime | None = None

    # ---- Milestones ----
    runner_accepted_at: datetime | None = None
    runner_at_atm_at: datetime | None = None
    cash_withdrawn_at: datetime | None = None
    handoff_completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: uuid.UUID | None = None

    # ---- Rating (the only fields writable after a terminal status) ----
    rating: int | None = None
    rating_comment: str | None = None
    rating_submitted_at: datetime | None = None

    version: int = Field(default=1)

    created_at: datetime = Field(
        default_factory=_utcnow,
        description="Creation timestamp (UTC)",
    )
    updated_at: datetime = Field(default_factory=_utcnow)


class OrderEvent(SQLModel, table=True):
    """
    Append-only order log.

    Two kinds of rows share this table:
      - status transitions written by the repository
        (from_status/to_status/actor set, event_type empty)
      - domain events written by the event emitter
        (event_type/payload set, drive push notifications)
    """

    __tablename__ = "order_events"
    __table_args__ = (UniqueConstraint("order_id", "to_status", "client_action_id"),)

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
    )

    event_type: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )

    from_status: str | None = None
    to_status: str | None = None
    actor_id: uuid.UUID | None = None
    actor_role: str | None = None
    client_action_id: str | None = None
    # "metadata" is reserved on declarative classes
    event_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )

    created_at: datetime = Field(default_factory=_utcnow)
