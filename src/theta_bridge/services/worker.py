"""
Background threads serving a :class:`~theta_bridge.services.queue.RequestQueue`.
"""

from __future__ import annotations

import threading
import time
from http import HTTPStatus
from typing import TYPE_CHECKING, Optional

from ..adapters.api.base import describe_error
from ..core.logging import bind, get_logger
from ..core.registry import HandlerRegistry, normalize_path

if TYPE_CHECKING:
    from .queue import RequestQueue, WorkItem


def no_handler_message(path: str, registry: HandlerRegistry) -> str:
    registered = ", ".join(registry.handler_ids()) or "(none)"
    return f"No handler registered for path '{normalize_path(path)}'. Registered handlers: {registered}"


class DrainWorker:
    """
    Single consumer that processes pending items strictly one at a time.

    The worker is started lazily by the queue and restarted by the next
    submission if it ever stops. Failures while processing one item are
    recorded on that item and never stop the loop.

    Each thread gets its own stop event. A thread started after :meth:`stop`
    timed out first waits for its predecessor to finish the item in hand, so
    upstream calls stay serialized.
    """

    def __init__(self, queue: "RequestQueue", registry: HandlerRegistry, *, idle_delay: float) -> None:
        self.queue = queue
        self.registry = registry
        self.idle_delay = idle_delay
        self.logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def ensure_running(self) -> bool:
        """Start the drain thread unless one is already active. Returns ``True`` when started."""

        with self._lock:
            if self.running:
                return False
            previous = self._thread
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop, previous),
                name="theta-bridge-drain",
                daemon=True,
            )
            self._thread.start()
        self.logger.debug("Drain worker started")
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._stop.set()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self, stop: threading.Event, previous: Optional[threading.Thread]) -> None:
        if previous is not None:
            previous.join()
        try:
            while not stop.is_set():
                item = self.queue.claim_next()
                if item is None:
                    self.queue.wait_for_work(self.idle_delay)
                    continue
                try:
                    self.process(item)
                except Exception as exc:
                    self.logger.exception("Unexpected error while processing request", extra={"request_id": item.request_id})
                    self.queue.record_failure(item, status_code=int(HTTPStatus.INTERNAL_SERVER_ERROR), error=describe_error(exc))
        except Exception:
            self.logger.exception("Drain worker stopped unexpectedly")
        finally:
            with self._lock:
                if self._thread is threading.current_thread():
                    self._thread = None
            self.logger.debug("Drain worker stopped")

    def process(self, item: "WorkItem") -> None:
        """Resolve the handler for ``item``, execute it and record the outcome on the queue."""

        logger = bind(self.logger, request_id=item.request_id, method=item.method, path=item.path, attempt=item.attempts)
        handler = self.registry.resolve(item.path)
        if handler is None:
            message = no_handler_message(item.path, self.registry)
            logger.warning("No handler for request path")
            self.queue.record_failure(item, status_code=int(HTTPStatus.NOT_FOUND), error=message)
            return

        logger.debug("Request claimed", extra={"handler": handler.handler_id})
        started = time.monotonic()
        response = handler.execute(item.to_handler_request())
        self.queue.record_response(item, response)
        logger.info(
            "Request processed",
            extra={
                "handler": handler.handler_id,
                "status_code": response.status_code,
                "duration": round(time.monotonic() - started, 3),
            },
        )


class EvictionSweeper:
    """Periodically removes items older than the queue's eviction age."""

    def __init__(self, queue: "RequestQueue", *, interval: float) -> None:
        self.queue = queue
        self.interval = interval
        self.logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def ensure_running(self) -> bool:
        with self._lock:
            if self.running:
                return False
            self._stop = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._stop,), name="theta-bridge-sweeper", daemon=True)
            self._thread.start()
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._stop.set()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            try:
                self.queue.evict_stale()
            except Exception:
                self.logger.exception("Eviction sweep failed")
