from __future__ import annotations

import logging
import queue
import threading
import time
from enum import Enum
from typing import Callable, Optional

from .action import Action, on_stop_signal
from .errors import ConfigError
from .sdk import EventService, Registration

logger = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.2


class EventKind(str, Enum):
    BLOCK = "listenblock"
    FILTERED_BLOCK = "listenfilteredblock"
    CHAINCODE = "listencc"
    TX_STATUS = "listentx"


def _register(kind: EventKind, service: EventService, action: Action) -> tuple[Registration, queue.Queue, str]:
    config = action.config
    if kind is EventKind.BLOCK:
        reg, events = service.register_block_event()
        return reg, events, "block events"
    if kind is EventKind.FILTERED_BLOCK:
        reg, events = service.register_filtered_block_event()
        return reg, events, "filtered block events"
    if kind is EventKind.CHAINCODE:
        if not config.chaincode_id:
            raise ConfigError("must specify the chaincode ID")
        reg, events = service.register_chaincode_event(config.chaincode_id, config.event_filter)
        return reg, events, f"CC event on chaincode [{config.chaincode_id}] and event [{config.event_filter}]"
    if kind is EventKind.TX_STATUS:
        if not config.tx_id:
            raise ConfigError("must specify the transaction ID")
        reg, events = service.register_tx_status_event(config.tx_id)
        return reg, events, f"TX event for TxID [{config.tx_id}]"
    raise ValueError(f"unsupported event kind: {kind}")


class EventListener:
    """
    Prints events from one registration until stopped.

    Stops on request (signal), after ``max_events`` events, after
    ``duration_s`` seconds, or when the event source closes its queue by
    putting None. The registration is always removed.
    """

    def __init__(
        self,
        action: Action,
        kind: EventKind,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.action = action
        self.kind = EventKind(kind)
        self.received = 0
        self._stop = threading.Event()
        self._clock = clock

    def stop(self) -> None:
        self._stop.set()

    @property
    def max_events(self) -> int:
        if self.kind is EventKind.TX_STATUS:
            return 1
        return max(0, int(self.action.config.max_events))

    def run(self) -> int:
        service = self.action.event_service()
        printer = self.action.printer
        reg, events, description = _register(self.kind, service, self.action)
        printer.print("Registering %s", description)
        try:
            with on_stop_signal(self.stop):
                self._drain(events)
        finally:
            printer.print("Unregistering %s", description)
            service.unregister(reg)
        logger.info("Received %d event(s)", self.received)
        return 0

    def _drain(self, events: queue.Queue) -> None:
        duration = float(self.action.config.duration_s)
        deadline: Optional[float] = self._clock() + duration if duration > 0 else None
        limit = self.max_events

        while not self._stop.is_set():
            timeout = _POLL_INTERVAL_S
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.debug("Listen duration of %.1fs elapsed", duration)
                    return
                timeout = min(timeout, remaining)

            try:
                event = events.get(timeout=timeout)
            except queue.Empty:
                continue
            if event is None:
                logger.debug("Event source closed")
                return

            self.action.printer.print_event(event)
            self.received += 1
            if limit and self.received >= limit:
                return


def run_listen(action: Action, kind: EventKind | str) -> int:
    return EventListener(action, EventKind(kind)).run()
