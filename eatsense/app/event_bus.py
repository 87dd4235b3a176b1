import asyncio
import inspect
import itertools
import logging
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Type

from eatsense.app.events.base_event import BaseEvent, EventPriority

logger = logging.getLogger(__name__)


class EventBus:
    """Asynchronous event bus with priority-ordered, single-worker dispatch.

    Events are queued on an asyncio priority queue keyed by (priority, insertion
    counter), so events of equal priority keep their publish order. A single
    worker task dispatches each event to every handler subscribed to its type (or
    a base type), one at a time, which serialises all state changes driven through
    the bus. Sync and async handlers are both supported; handler errors are logged
    and never stop the worker.

    The queue is bounded softly: once it reaches max_queue_size, NORMAL and LOW
    events are dropped while CRITICAL and HIGH events are still accepted.

    Attributes:
        _subscribers: Event type to handler list.
        _event_queue: Priority queue of (priority, sequence, event).
        _worker_task: Background dispatch task.
        _is_shutting_down: Set once stop_worker() starts; new events are rejected.
        _max_queue_size: Depth at which backpressure kicks in.
        _events_dropped: Number of events rejected by backpressure.
    """

    def __init__(
        self,
        high_priority_sleep: float = 0.001,
        low_priority_sleep: float = 0.01,
        max_queue_size: int = 200,
    ) -> None:
        self._subscribers: Dict[Type[BaseEvent], List[Callable[[BaseEvent], Any]]] = defaultdict(list)
        self._event_queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._worker_task: Optional[asyncio.Task] = None
        self._is_shutting_down: bool = False
        self._high_priority_sleep: float = high_priority_sleep
        self._low_priority_sleep: float = low_priority_sleep
        self._counter: itertools.count = itertools.count()
        self._subscribers_lock: threading.RLock = threading.RLock()
        self._max_queue_size: int = max_queue_size
        self._events_dropped: int = 0
        self._events_processed: int = 0

    async def publish(self, event: BaseEvent) -> None:
        """Queue an event for dispatch.

        Args:
            event: BaseEvent subclass instance to publish to subscribers.
        """
        if self._is_shutting_down:
            logger.debug(f"Rejecting event {type(event).__name__} during shutdown")
            return

        if not isinstance(event, BaseEvent):
            logger.error(f"Event data must be a subclass of BaseEvent, got {type(event)}")
            return

        queue_size = self._event_queue.qsize()

        if queue_size >= self._max_queue_size:
            if event.priority >= EventPriority.NORMAL:
                self._events_dropped += 1
                logger.warning(
                    f"Queue full ({queue_size}/{self._max_queue_size}) - dropping {type(event).__name__} "
                    f"(priority={event.priority}, total_dropped={self._events_dropped})"
                )
                return
            logger.error(
                f"Queue full ({queue_size}/{self._max_queue_size}) but forcing {type(event).__name__} "
                f"(priority={event.priority})"
            )

        await self._event_queue.put((event.priority, next(self._counter), event))

        if queue_size > self._max_queue_size * 0.75:
            logger.warning(f"Event queue at 75% capacity: {queue_size}/{self._max_queue_size} events")

    def subscribe(self, event_type: Type[BaseEvent], handler: Callable[[BaseEvent], Any]) -> None:
        """Register a handler for an event type (matched with isinstance).

        Thread-safe; may be called from any thread.

        Args:
            event_type: BaseEvent subclass to subscribe to.
            handler: Sync or async callable taking the event.
        """
        if not inspect.isclass(event_type) or not issubclass(event_type, BaseEvent):
            logger.error(f"Can only subscribe to subclasses of BaseEvent, got {event_type}")
            return

        if not callable(handler):
            logger.error(f"Handler must be callable, got {type(handler)}")
            return

        logger.debug(f"Subscribing {getattr(handler, '__name__', handler)} to {event_type.__name__}")
        with self._subscribers_lock:
            self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[BaseEvent], handler: Callable[[BaseEvent], Any]) -> None:
        with self._subscribers_lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    async def _dispatch(self, event: BaseEvent) -> None:
        with self._subscribers_lock:
            handlers_to_call = [
                handler
                for subscribed_type, handlers in self._subscribers.items()
                if isinstance(event, subscribed_type)
                for handler in handlers
            ]

        if not handlers_to_call:
            logger.debug(f"No handlers registered for event '{type(event).__name__}'")
            return

        for handler in handlers_to_call:
            handler_name = getattr(handler, "__name__", str(handler))
            try:
                handler_start = time.monotonic()
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)

                handler_time = time.monotonic() - handler_start
                if handler_time > 0.1:
                    logger.warning(f"Slow handler {handler_name} for event '{type(event).__name__}': {handler_time:.4f}s")
            except Exception as e:
                logger.error(f"Error in handler {handler_name} for event '{type(event).__name__}': {e}", exc_info=True)

    async def _process_events(self) -> None:
        """Worker loop: dequeue, dispatch, pace according to priority and depth."""
        logger.debug("Event processing worker started")

        while not self._is_shutting_down:
            try:
                priority, _, event = await self._event_queue.get()
                try:
                    await self._dispatch(event)
                    self._events_processed += 1
                finally:
                    self._event_queue.task_done()

                queue_depth = self._event_queue.qsize()
                if priority == EventPriority.CRITICAL or queue_depth > 0:
                    await asyncio.sleep(0)
                else:
                    await asyncio.sleep(
                        self._low_priority_sleep if priority >= EventPriority.NORMAL else self._high_priority_sleep
                    )

            except asyncio.CancelledError:
                logger.debug("Event processing worker cancelled")
                break
            except Exception as e:
                logger.critical(f"Fatal error in event processing worker: {e}", exc_info=True)
                await asyncio.sleep(0.1)

    async def start_worker(self) -> None:
        """Start the dispatch task if it is not already running."""
        if self._is_shutting_down:
            logger.debug("Not starting worker during shutdown")
            return

        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._process_events())
            logger.debug("Event bus worker started")
        else:
            logger.debug("Event bus worker already running")

    async def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued event (including ones published by handlers) is dispatched.

        Returns:
            True if the queue drained, False on timeout.
        """
        try:
            await asyncio.wait_for(self._event_queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Event queue not idle after {timeout}s ({self._event_queue.qsize()} pending)")
            return False

    async def stop_worker(self, drain_timeout: float = 2.0) -> None:
        """Drain the queue (bounded by drain_timeout), stop the worker and drop subscribers."""
        if self._worker_task is not None and not self._worker_task.done():
            await self.wait_until_idle(timeout=drain_timeout)

        self._is_shutting_down = True
        remaining = self._event_queue.qsize()
        if remaining:
            logger.warning(f"Could not process all events before shutdown. {remaining} events discarded.")

        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                logger.debug("Event bus worker successfully stopped")

        with self._subscribers_lock:
            logger.debug(f"Clearing {len(self._subscribers)} subscriber lists")
            self._subscribers.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Queue depth, drop/processed counters, subscriber counts and worker state."""
        worker_status = "running"
        if self._worker_task is None:
            worker_status = "not_created"
        elif self._worker_task.done():
            worker_status = "cancelled" if self._worker_task.cancelled() else "stopped"

        with self._subscribers_lock:
            subscribers = {event.__name__: len(handlers) for event, handlers in self._subscribers.items()}

        queue_size = self._event_queue.qsize()
        return {
            "queue_size": queue_size,
            "max_queue_size": self._max_queue_size,
            "queue_utilization": f"{(queue_size / self._max_queue_size * 100):.1f}%",
            "events_dropped": self._events_dropped,
            "events_processed": self._events_processed,
            "subscribers": subscribers,
            "worker_status": worker_status,
            "is_shutting_down": self._is_shutting_down,
        }
