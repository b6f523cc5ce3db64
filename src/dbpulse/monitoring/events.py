"""
Monitoring events
Explicit listener registration for things other components react to
"""

import asyncio
import inspect
import threading
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from dbpulse.core.logging import LoggerMixin


class MonitorEvent(str, Enum):
    """Events published by the monitor"""
    METRICS_COLLECTED = "metrics_collected"
    ALERT_OPENED = "alert_opened"
    ALERT_RESOLVED = "alert_resolved"
    SLOW_QUERY_ANALYSIS = "slow_query_analysis"
    COMPREHENSIVE_ANALYSIS = "comprehensive_analysis"


Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventDispatcher(LoggerMixin):
    """
    Publishes events to registered handlers.

    Plain callables run inline; coroutine functions are scheduled on the
    running loop and not awaited by the publisher. Handler failures are
    logged and never reach the publisher.
    """

    def __init__(self):
        self._handlers: Dict[MonitorEvent, List[Handler]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()
        self._lock = threading.Lock()

    def subscribe(self, event: MonitorEvent, handler: Handler) -> None:
        with self._lock:
            self._handlers[event].append(handler)
        self.logger.debug(f"Handler registered for {event.value}")

    def unsubscribe(self, event: MonitorEvent, handler: Handler) -> bool:
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def handler_count(self, event: MonitorEvent) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))

    @property
    def pending(self) -> int:
        return len(self._pending)

    def publish(self, event: MonitorEvent, payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, []))

        for handler in handlers:
            if inspect.iscoroutinefunction(handler):
                self._schedule(event, handler, payload)
                continue
            try:
                handler(payload)
            except Exception as e:
                self.logger.error(f"Handler for {event.value} failed: {e}")

    def _schedule(self, event: MonitorEvent, handler: Handler, payload: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning(
                f"No running event loop; async handler for {event.value} skipped"
            )
            return

        task = loop.create_task(self._run_async(event, handler, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_async(self, event: MonitorEvent, handler: Handler, payload: Any) -> None:
        try:
            await handler(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Async handler for {event.value} failed: {e}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for scheduled handlers to finish, cancelling any still running at timeout"""
        if not self._pending:
            return
        pending = list(self._pending)
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            self.logger.warning(f"{len(still_running)} event handlers cancelled at shutdown")
            await asyncio.gather(*still_running, return_exceptions=True)
