from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from common.health import HealthServer, HealthStats
from common.sui_rpc import SuiClient
from state.models import ChainEvent, PurchaseEvent


logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class EventPoller:
    """
    Reconciliation loop over `ExperiencePurchased` events.

    Each iteration fetches the newest `limit` events, dispatches those past
    the in-memory cursor in ascending sequence order, and waits. A failing
    event is recorded and skipped (the cursor still moves past it); a failing
    fetch leaves the cursor alone and waits `backoff_interval` instead.

    The cursor lives only for the process run; after a restart the recent
    window is scanned again and the grant's membership check makes the
    replays no-ops.
    """

    def __init__(
        self,
        client: SuiClient,
        handler: Callable[[PurchaseEvent], Any],
        stats: HealthStats,
        *,
        event_type: str,
        limit: int = 50,
        interval: float = 5.0,
        backoff_interval: float = 10.0,
        monitor: Optional[HealthServer] = None,
        wait: Optional[Callable[[float], Any]] = None,
    ) -> None:
        self._client = client
        self._handler = handler
        self._stats = stats
        self.event_type = event_type
        self.limit = limit
        self.interval = interval
        self.backoff_interval = backoff_interval
        self._monitor = monitor
        self._stop = threading.Event()
        # Waiting on the stop event makes stop() interrupt the sleep
        self._wait = wait or self._stop.wait
        self._lock = threading.Lock()
        self._state = PollerState.IDLE
        self._cursor: Any = None
        # Sequences dispatched at the cursor's timestamp, reset when it moves on
        self._cursor_ts: Optional[int] = None
        self._seen_at_cursor_ts: Set[Any] = set()

    @property
    def cursor(self) -> Any:
        return self._cursor

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is PollerState.RUNNING

    def start(self) -> None:
        """Run the loop on the calling thread until stop() is called."""
        with self._lock:
            if self._state is not PollerState.IDLE:
                logger.warning("Listener is already %s", self._state.value)
                return
            if self._stop.is_set():
                self._state = PollerState.STOPPED
                return
            self._state = PollerState.RUNNING

        logger.info("Starting purchase event listener for %s", self.event_type)
        try:
            if self._monitor is not None:
                self._monitor.start()
            while not self._stop.is_set():
                try:
                    self.poll_once()
                except Exception as exc:
                    logger.error(
                        "Error polling events, retrying in %gs",
                        self.backoff_interval,
                        exc_info=True,
                        extra={"category": "fetch", "error": str(exc)},
                    )
                    self._stats.record_error(str(exc))
                    delay = self.backoff_interval
                else:
                    delay = self.interval
                if self._stop.is_set():
                    break
                self._wait(delay)
        finally:
            if self._monitor is not None:
                self._monitor.stop()
            with self._lock:
                self._state = PollerState.STOPPED
            logger.info("Purchase event listener stopped")

    def request_stop(self) -> None:
        """
        Ask the loop to exit after the current iteration.

        Only sets the stop event, so it is safe to call from a signal handler
        that interrupted the loop thread.
        """
        self._stop.set()

    def stop(self) -> None:
        logger.info("Stopping purchase event listener")
        self.request_stop()
        with self._lock:
            if self._state is PollerState.IDLE:
                self._state = PollerState.STOPPED

    def poll_once(self) -> int:
        """
        Fetch and dispatch new events once. Returns how many were dispatched.

        Fetch errors propagate; handler errors do not.
        """
        page = self._client.query_events(self.event_type, limit=self.limit, descending=True)
        if not page.data:
            return 0

        dispatched = 0
        for event in self._pending(page.data):
            self._dispatch(event)
            self._advance(event)
            dispatched += 1
        return dispatched

    def _pending(self, events: List[ChainEvent]) -> List[ChainEvent]:
        ordered = sorted(events, key=lambda e: e.sequence)
        if self._cursor is None:
            return ordered
        return [e for e in ordered if self._is_new(e)]

    def _is_new(self, event: ChainEvent) -> bool:
        if event.sequence in self._seen_at_cursor_ts:
            return False
        if event.sequence > self._cursor:
            return True
        # Checkpoints sharing the cursor's millisecond can land in a later
        # fetch and sort below the cursor by digest
        return event.timestamp_ms is not None and event.timestamp_ms == self._cursor_ts

    def _advance(self, event: ChainEvent) -> None:
        if self._cursor is None or event.sequence > self._cursor:
            self._cursor = event.sequence
        ts = event.timestamp_ms
        if ts is None:
            return
        if self._cursor_ts is None or ts > self._cursor_ts:
            self._cursor_ts = ts
            self._seen_at_cursor_ts.clear()
        self._seen_at_cursor_ts.add(event.sequence)

    def _dispatch(self, event: ChainEvent) -> None:
        try:
            purchase = PurchaseEvent.model_validate(event.parsed_json)
            logger.info(
                "New purchase detected: experience %s, buyer %s, seller %s, price %s SUI",
                purchase.experience_id,
                purchase.buyer,
                purchase.seller,
                purchase.price_sui,
                extra={
                    "purchase_id": purchase.purchase_id,
                    "experience_id": purchase.experience_id,
                    "buyer": purchase.buyer,
                    "sequence": event.sequence,
                },
            )
            self._handler(purchase)
        except Exception as exc:
            logger.error(
                "Failed to process purchase event",
                exc_info=True,
                extra={"category": "event", "sequence": event.sequence, "error": str(exc)},
            )
            self._stats.record_error(str(exc))
