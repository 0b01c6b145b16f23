# app/schemas/order.py
import re
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, field_validator, model_validator
from sqlmodel import SQLModel, Field

from app.schemas.user import PartySummary
from app.services.order_status import OrderStatus

DeliveryStyle = Literal["SPEED", "COUNTED"]
CancelRole = Literal["customer", "runner", "admin"]


class OrderCreate(SQLModel):
    """
    Payload for a new cash request.

    Customer provides:
      - requested_amount (limits and step checked by the service)
      - either address_id (a saved address, snapshotted at creation)
        or customer_address (free text)
      - optional notes and delivery style
      - optional client_request_id so a retried request is not duplicated

    Backend derives:
      - customer_id from token
      - every fee from requested_amount
      - status = 'Pending'
    """

    model_config = ConfigDict(extra="forbid")

    requested_amount: float
    customer_address: str | None = None
    address_id: uuid.UUID | None = None
    customer_notes: str | None = Field(default=None, max_length=500)
    delivery_style: DeliveryStyle = "SPEED"
    client_request_id: str | None = Field(default=None, max_length=64)

    @field_validator("customer_address", "customer_notes")
    @classmethod
    def normalize_text(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def require_address(self) -> "OrderCreate":
        if self.address_id is None and not self.customer_address:
            raise ValueError("address_id or customer_address is required")
        return self


class FeeQuote(SQLModel):
    requested_amount: float
    profit: float
    compliance_fee: float
    delivery_fee: float
    total_service_fee: float
    total_payment: float


class OrderRead(SQLModel):
    """
    Order as seen by its customer, its runner and admins.

    The handoff code itself is never part of this model.
    """

    id: uuid.UUID
    customer_id: uuid.UUID
    runner_id: uuid.UUID | None
    requested_amount: float
    profit: float
    compliance_fee: float
    delivery_fee: float
    total_service_fee: float
    total_payment: float
    status: OrderStatus
    customer_address: str
    customer_name: str
    customer_notes: str | None
    address_id: uuid.UUID | None
    address_snapshot: dict[str, Any] | None
    delivery_style: DeliveryStyle
    otp_expires_at: datetime | None
    otp_attempts: int
    runner_accepted_at: datetime | None
    runner_at_atm_at: datetime | None
    cash_withdrawn_at: datetime | None
    handoff_completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    rating: int | None
    rating_comment: str | None
    version: int
    created_at: datetime
    updated_at: datetime


class OrderDetailRead(OrderRead):
    """
    Order with both parties attached, plus the "runner arrived" sub-state
    of Pending Handoff.
    """

    customer: PartySummary | None = None
    runner: PartySummary | None = None
    runner_arrived: bool = False


class OrderCancel(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason cannot be empty")
        return v


class OtpVerify(SQLModel):
    model_config = ConfigDict(extra="forbid")

    code: str

    @field_validator("code")
    @classmethod
    def six_ascii_digits(cls, v: str) -> str:
        # \d would also accept non-ASCII digits
        if not re.fullmatch(r"[0-9]{6}", v):
            raise ValueError("code must be 6 digits")
        return v


class OtpVerifyResult(SQLModel):
    verified: bool


class OtpIssued(SQLModel):
    """Returned to the customer only; the runner never sees the code."""

    order_id: uuid.UUID
    code: str
    expires_at: datetime


class OrderRating(SQLModel):
    model_config = ConfigDict(extra="forbid")

    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=1000)


class RunnerArrived(SQLModel):
    order_id: uuid.UUID
    runner_arrived: bool


class OrderEventRead(SQLModel):
    id: uuid.UUID
    order_id: uuid.UUID
    event_type: str | None
    payload: dict[str, Any]
    from_status: str | None
    to_status: str | None
    actor_id: uuid.UUID | None
    actor_role: str | None
    created_at: datetime


class ReorderEligibilityRead(SQLModel):
    ok: bool
    reason: Literal["missing_bank", "missing_address", "blocked_order"] | None = None
    message: str | None = None
