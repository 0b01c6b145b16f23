# app/realtime/subscriber.py
"""
Long-lived subscription to the `orders` change feed.

Usage:

    client = await create_realtime_client()
    sub = OrderRealtimeSubscriber(
        client,
        CustomerOrdersFilter(customer_id),
        on_update=lambda new, old: ...,
    )
    await sub.start()
    ...
    await sub.stop()

Rules:
  - Callbacks run synchronously on the event loop and must return quickly.
    Any exception they raise is logged and swallowed.
  - CHANNEL_ERROR, TIMED_OUT and an unexpected CLOSED trigger a reconnect
    after `attempt * base_delay` seconds, up to `max_attempts` times. Each
    reconnect removes the channel and builds a new one. After the last
    attempt the subscriber is `degraded` and `on_degraded` is called.
  - UPDATEs carrying a `version` (or, failing that, `updated_at`) that is
    not newer than the last one applied for the same order are dropped.
    Only the `max_tracked_orders` most recently seen orders are remembered.
"""
import asyncio
import contextlib
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from app.core.config import get_settings
from app.realtime.filters import Row, SubscriptionFilter

logger = logging.getLogger(__name__)

CHANGE_TYPES = ("INSERT", "UPDATE", "DELETE")
RECONNECT_STATES = ("CHANNEL_ERROR", "TIMED_OUT", "CLOSED")


@dataclass(frozen=True)
class OrderChange:
    event_type: str
    new: Row | None
    old: Row | None


def _as_row(value: Any) -> Row | None:
    return value if isinstance(value, dict) and value else None


def normalize_change(payload: Any) -> OrderChange | None:
    """
    Accept both `{eventType, new, old}` and the realtime-py
    `{data: {type, record, old_record}}` shapes.
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict):
        event_type = data.get("type") or payload.get("eventType")
        new, old = data.get("record"), data.get("old_record")
    else:
        event_type = payload.get("eventType") or payload.get("type") or payload.get("event")
        new, old = payload.get("new"), payload.get("old")

    event_type = getattr(event_type, "value", event_type)
    new, old = _as_row(new), _as_row(old)
    if event_type not in CHANGE_TYPES or (new is None and old is None):
        return None
    return OrderChange(event_type=event_type, new=new, old=old)


def _ordering_key(row: Row) -> tuple[int, Any] | None:
    version = row.get("version")
    if isinstance(version, int) and not isinstance(version, bool):
        return (0, version)
    updated_at = row.get("updated_at")
    if isinstance(updated_at, str):
        try:
            return (1, datetime.fromisoformat(updated_at.replace("Z", "+00:00")))
        except ValueError:
            return None
    if isinstance(updated_at, datetime):
        return (1, updated_at)
    return None


class OrderRealtimeSubscriber:
    def __init__(
        self,
        client: Any,
        order_filter: SubscriptionFilter,
        on_insert: Callable[[Row], None] | None = None,
        on_update: Callable[[Row, Row | None], None] | None = None,
        on_delete: Callable[[Row], None] | None = None,
        on_degraded: Callable[[str], None] | None = None,
        base_delay: float | None = None,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        table: str = "orders",
        schema: str = "public",
        max_tracked_orders: int = 1000,
    ):
        settings = get_settings()
        self.client = client
        self.filter = order_filter
        self.on_insert = on_insert
        self.on_update = on_update
        self.on_delete = on_delete
        self.on_degraded = on_degraded
        self.base_delay = (
            settings.REALTIME_RECONNECT_DELAY_SECONDS if base_delay is None else base_delay
        )
        self.max_attempts = (
            settings.REALTIME_MAX_RECONNECT_ATTEMPTS if max_attempts is None else max_attempts
        )
        self._sleep = sleep
        self.table = table
        self.schema = schema

        self.degraded = False
        self.subscribed = False
        self.attempts = 0
        self._running = False
        self._channel: Any = None
        self._generation = 0
        self._reconnect_task: asyncio.Task | None = None
        self.max_tracked_orders = max(1, max_tracked_orders)
        self._last_applied: OrderedDict[str, tuple[int, Any]] = OrderedDict()

    @property
    def channel_name(self) -> str:
        return self.filter.channel_name

    # ---- Lifecycle ----

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.degraded = False
        self.attempts = 0
        try:
            await self._open()
        except Exception:
            logger.exception("Realtime subscribe failed for %s", self.channel_name)
            self._schedule_reconnect()

    async def stop(self) -> None:
        """Cancel any pending reconnect and remove the channel. Safe to repeat."""
        self._running = False
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._teardown()
        self.attempts = 0
        self._last_applied.clear()

    async def change_filter(self, order_filter: SubscriptionFilter) -> None:
        await self.stop()
        self.filter = order_filter
        await self.start()

    async def _open(self) -> None:
        self._generation += 1
        generation = self._generation
        channel = self.client.channel(self.channel_name)
        options: dict[str, Any] = {
            "event": "*",
            "schema": self.schema,
            "table": self.table,
            "callback": self.handle_change,
        }
        if self.filter.server_filter:
            options["filter"] = self.filter.server_filter
        channel.on_postgres_changes(**options)
        self._channel = channel
        logger.info(
            "Subscribing to %s (filter=%s)",
            self.channel_name,
            self.filter.server_filter or "all orders",
        )
        await channel.subscribe(
            lambda state, err=None: self._on_status(generation, state, err)
        )

    async def _teardown(self) -> None:
        # Statuses from the old channel (its CLOSED included) are ignored
        self._generation += 1
        self.subscribed = False
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await self.client.remove_channel(channel)
        except Exception:
            logger.exception("Failed to remove realtime channel %s", self.channel_name)

    # ---- Status / reconnect ----

    def _on_status(self, generation: int, state: Any, err: Exception | None = None) -> None:
        if generation != self._generation or not self._running:
            return
        value = getattr(state, "value", state)
        if value == "SUBSCRIBED":
            self.attempts = 0
            self.subscribed = True
            self.degraded = False
            logger.info("Subscribed to %s", self.channel_name)
        elif value in RECONNECT_STATES:
            self.subscribed = False
            logger.warning("Realtime channel %s reported %s: %s", self.channel_name, value, err)
            self._schedule_reconnect()
        else:
            logger.debug("Realtime channel %s status %s", self.channel_name, value)

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self.attempts >= self.max_attempts:
            self._give_up()
            return
        self.attempts += 1
        delay = self.attempts * self.base_delay
        logger.info(
            "Reconnecting %s in %.1fs (attempt %d/%d)",
            self.channel_name,
            delay,
            self.attempts,
            self.max_attempts,
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect(delay))

    async def _reconnect(self, delay: float) -> None:
        await self._sleep(delay)
        if not self._running:
            return
        await self._teardown()
        # Let a failure status from the new channel schedule the next attempt
        self._reconnect_task = None
        try:
            await self._open()
        except Exception:
            logger.exception("Realtime reconnect failed for %s", self.channel_name)
            self._schedule_reconnect()
            return
        if not self._running:
            await self._teardown()

    def _give_up(self) -> None:
        if self.degraded:
            return
        self.degraded = True
        logger.error(
            "Giving up on %s after %d reconnect attempts", self.channel_name, self.attempts
        )
        if self.on_degraded is not None:
            try:
                self.on_degraded(self.channel_name)
            except Exception:
                logger.exception("on_degraded handler failed for %s", self.channel_name)

    # ---- Change events ----

    def handle_change(self, payload: Any) -> None:
        """Entry point for the channel; never raises."""
        try:
            self._handle_change(payload)
        except Exception:
            logger.exception("Realtime handler failed on %s", self.channel_name)

    def _is_stale(self, change: OrderChange) -> bool:
        row = change.new or change.old or {}
        order_id = row.get("id")
        if order_id is None:
            return False
        key = str(order_id)
        if change.event_type == "DELETE":
            self._last_applied.pop(key, None)
            return False
        marker = _ordering_key(row)
        if marker is None:
            return False
        last = self._last_applied.get(key)
        if last is not None:
            self._last_applied.move_to_end(key)
            if last[0] == marker[0] and marker[1] <= last[1]:
                return change.event_type == "UPDATE"
        self._last_applied[key] = marker
        if len(self._last_applied) > self.max_tracked_orders:
            self._last_applied.popitem(last=False)
        return False

    def _handle_change(self, payload: Any) -> None:
        change = normalize_change(payload)
        if change is None:
            logger.warning("Ignoring malformed change on %s", self.channel_name)
            return
        if not self.filter.matches(change.event_type, change.new, change.old):
            return
        if self._is_stale(change):
            logger.debug("Dropping stale update on %s", self.channel_name)
            return

        if change.event_type == "INSERT" and change.new is not None:
            if self.on_insert is not None:
                self.on_insert(change.new)
        elif change.event_type == "UPDATE" and change.new is not None:
            if self.on_update is not None:
                self.on_update(change.new, change.old)
        elif change.event_type == "DELETE" and change.old is not None:
            if self.on_delete is not None:
                self.on_delete(change.old)
