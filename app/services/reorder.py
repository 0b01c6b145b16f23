# app/services/reorder.py
"""
Reorder eligibility.

Pure decision over already-loaded rows; the service layer does the reads.

Checks, in this order (the first failure wins):
  1. missing_bank:    no active bank account and no legacy bank link
  2. missing_address: the previous order's saved address is gone and the
                      order has no address snapshot
  3. blocked_order:   the previous order is flagged (hook, nothing flags
                      orders yet)
The previous runner's account status is only logged.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Literal

from app.models.address import CustomerAddress
from app.models.bank_account import BankAccount
from app.models.order import Order
from app.models.user import User

logger = logging.getLogger(__name__)

ReorderBlockReason = Literal["missing_bank", "missing_address", "blocked_order"]

MISSING_BANK_MESSAGE = (
    "Your last order used a bank account that's no longer linked. "
    "Please update your bank and try again."
)
MISSING_ADDRESS_MESSAGE = (
    "The address from your last order is no longer available. "
    "Please add or select a delivery address to reorder."
)
BLOCKED_ORDER_MESSAGE = "That order can't be reused. Please start a new request instead."


@dataclass(frozen=True)
class ReorderEligibility:
    ok: bool
    reason: ReorderBlockReason | None = None
    message: str | None = None


def _never_blocked(order: Order) -> bool:
    return False


def validate_reorder_eligibility(
    profile: User | None,
    addresses: Iterable[CustomerAddress],
    previous_order: Order,
    bank_accounts: Iterable[BankAccount] = (),
    previous_runner: User | None = None,
    is_blocked: Callable[[Order], bool] = _never_blocked,
) -> ReorderEligibility:
    has_bank = bool(list(bank_accounts)) or bool(profile and profile.plaid_item_id)
    if not has_bank:
        return ReorderEligibility(False, "missing_bank", MISSING_BANK_MESSAGE)

    address_ids = {address.id for address in addresses}
    has_address = (
        previous_order.address_id is not None and previous_order.address_id in address_ids
    ) or bool(previous_order.address_snapshot)
    if not has_address:
        return ReorderEligibility(False, "missing_address", MISSING_ADDRESS_MESSAGE)

    if is_blocked(previous_order):
        return ReorderEligibility(False, "blocked_order", BLOCKED_ORDER_MESSAGE)

    if previous_runner is not None and previous_runner.account_status != "active":
        logger.warning(
            "Reorder of order %s: previous runner %s is %s",
            previous_order.id,
            previous_runner.id,
            previous_runner.account_status,
        )

    return ReorderEligibility(ok=True)
