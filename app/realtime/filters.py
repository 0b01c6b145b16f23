# app/realtime/filters.py
"""
Scopes for order change-feed subscriptions.

Each filter names its channel, an optional server-side PostgREST filter,
and a client-side `matches` check applied to every inbound change. The
server filter only narrows traffic; `matches` is what callbacks rely on.

Rows arrive as plain dicts decoded from the realtime payload, so ids are
compared as strings.
"""
import uuid
from dataclasses import dataclass
from typing import Any

from app.services.order_status import PENDING

Row = dict[str, Any]


def _same(value: Any, expected: str) -> bool:
    return value is not None and str(value) == expected


def _is_available(row: Row | None) -> bool:
    return bool(row) and row.get("status") == PENDING and row.get("runner_id") is None


class SubscriptionFilter:
    @property
    def channel_name(self) -> str:
        raise NotImplementedError

    @property
    def server_filter(self) -> str | None:
        return None

    def matches(self, event_type: str, new: Row | None, old: Row | None) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class CustomerOrdersFilter(SubscriptionFilter):
    """All orders of one customer."""

    customer_id: uuid.UUID | str

    @property
    def channel_name(self) -> str:
        return f"customer-orders:{self.customer_id}"

    @property
    def server_filter(self) -> str | None:
        return f"customer_id=eq.{self.customer_id}"

    def matches(self, event_type: str, new: Row | None, old: Row | None) -> bool:
        row = new or old or {}
        return _same(row.get("customer_id"), str(self.customer_id))


@dataclass(frozen=True)
class RunnerAssignedFilter(SubscriptionFilter):
    """Orders assigned to one runner, or every assigned order when no id."""

    runner_id: uuid.UUID | str | None = None

    @property
    def channel_name(self) -> str:
        return f"runner-orders:{self.runner_id or 'all'}"

    @property
    def server_filter(self) -> str | None:
        return f"runner_id=eq.{self.runner_id}" if self.runner_id else None

    def matches(self, event_type: str, new: Row | None, old: Row | None) -> bool:
        if not self.runner_id:
            return True
        expected = str(self.runner_id)
        return any(_same((row or {}).get("runner_id"), expected) for row in (new, old))


@dataclass(frozen=True)
class AvailableOrdersFilter(SubscriptionFilter):
    """
    Pending, unassigned orders.

    The server can only filter on status, so `runner_id IS NULL` is
    checked here. UPDATEs pass when the order is available now or was
    before, so a consumer can drop an order another runner just claimed.
    """

    @property
    def channel_name(self) -> str:
        return "runner-available-orders"

    @property
    def server_filter(self) -> str | None:
        return f"status=eq.{PENDING}"

    def matches(self, event_type: str, new: Row | None, old: Row | None) -> bool:
        if event_type == "INSERT":
            return _is_available(new)
        if event_type == "UPDATE":
            return _is_available(new) or _is_available(old)
        if event_type == "DELETE":
            return _is_available(old)
        return False


@dataclass(frozen=True)
class AdminOrdersFilter(SubscriptionFilter):
    @property
    def channel_name(self) -> str:
        return "admin-orders"

    def matches(self, event_type: str, new: Row | None, old: Row | None) -> bool:
        return True


@dataclass(frozen=True)
class SingleOrderFilter(SubscriptionFilter):
    """
    One order by id.

    Narrow `id=eq.` server filters are unreliable on this backend, so by
    default the whole table is received and filtered here.
    """

    order_id: uuid.UUID | str
    server_side: bool = False

    @property
    def channel_name(self) -> str:
        return f"order:{self.order_id}"

    @property
    def server_filter(self) -> str | None:
        return f"id=eq.{self.order_id}" if self.server_side else None

    def matches(self, event_type: str, new: Row | None, old: Row | None) -> bool:
        expected = str(self.order_id)
        rows = [row for row in (new, old) if row and "id" in row]
        return bool(rows) and all(_same(row["id"], expected) for row in rows)
