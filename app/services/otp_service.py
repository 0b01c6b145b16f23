# app/services/otp_service.py
"""
Handoff OTP generation and verification.

Rules:
  - Codes are 6 digits in 100000-999999, drawn from `secrets`.
  - A code lives OTP_TTL_MINUTES and allows OTP_MAX_ATTEMPTS wrong guesses.
  - Verification fails closed and only ever answers True/False; it never
    raises for expiry or lockout and never reveals the stored code or the
    remaining attempts.
  - All checks run against the stored order row, never a client value.
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from sqlmodel import Session

from app.core.config import get_settings
from app.repositories.order_repo import OrderRepository
from app.services.event_service import OrderEventEmitter, TaskScheduler
from app.services.order_status import PENDING_HANDOFF

logger = logging.getLogger(__name__)


def new_otp_code() -> str:
    return str(secrets.randbelow(900000) + 100000)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OtpVerifier:
    def __init__(
        self,
        order_repo: OrderRepository,
        emitter: OrderEventEmitter,
        ttl_minutes: int | None = None,
        max_attempts: int | None = None,
    ):
        settings = get_settings()
        self.order_repo = order_repo
        self.emitter = emitter
        self.ttl = timedelta(minutes=ttl_minutes or settings.OTP_TTL_MINUTES)
        self.max_attempts = max_attempts or settings.OTP_MAX_ATTEMPTS

    def generate_otp(
        self,
        session: Session,
        order_id: uuid.UUID,
        *,
        actor_id: uuid.UUID | None = None,
    ) -> str | None:
        """
        Store a fresh code and move Cash Withdrawn -> Pending Handoff.

        Calling again while Pending Handoff replaces the code and resets
        the attempt counter. Returns None if the order is in any other
        status or the write failed.
        """
        code = new_otp_code()
        expires_at = datetime.now(timezone.utc) + self.ttl
        if not self.order_repo.store_otp(
            session, order_id, code, expires_at, actor_id=actor_id
        ):
            return None
        logger.info("Handoff code generated for order %s", order_id)
        return code

    def verify_otp(
        self,
        session: Session,
        order_id: uuid.UUID,
        code: str,
        *,
        actor_id: uuid.UUID | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> bool:
        order = self.order_repo.get_order_by_id(session, order_id)
        if order is None or order.status != PENDING_HANDOFF:
            return False
        if not order.otp_code or order.otp_expires_at is None:
            return False
        if datetime.now(timezone.utc) > _as_utc(order.otp_expires_at):
            logger.info("Expired handoff code submitted for order %s", order_id)
            return False
        if order.otp_attempts >= self.max_attempts:
            logger.info("Handoff code locked for order %s", order_id)
            return False

        code = str(code)
        if not secrets.compare_digest(order.otp_code.encode(), code.encode()):
            self.order_repo.record_failed_otp_attempt(session, order_id, self.max_attempts)
            logger.info("Wrong handoff code for order %s", order_id)
            return False

        if not self.order_repo.complete_handoff(
            session, order_id, code, self.max_attempts, actor_id=actor_id
        ):
            return False

        self.emitter.emit_otp_verified(session, order_id, scheduler=scheduler)
        self.emitter.emit_handoff_completed(session, order_id, scheduler=scheduler)
        return True
