"""
In-memory request queue.

The queue owns every :class:`WorkItem` and the correlation index. Other
components never touch either map directly: the drain worker claims items and
records outcomes through :meth:`RequestQueue.claim_next`,
:meth:`RequestQueue.record_response` and :meth:`RequestQueue.record_failure`.

All map access happens under one lock held only for short, non-blocking
sections, so submissions never wait on an upstream call or on the worker's
idle delay.
"""

from __future__ import annotations

import base64
import binascii
import itertools
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from ..adapters.base import HandlerRequest, HandlerResponse, QueryValue
from ..config import DEFAULT_EVICTION_AGE, DEFAULT_IDLE_DELAY, DEFAULT_SWEEP_INTERVAL, BridgeSettings
from ..core.logging import get_logger
from ..core.registry import HandlerRegistry
from .worker import DrainWorker, EvictionSweeper


class SubmissionError(ValueError):
    """Raised when a submission payload is malformed. Such payloads never enter the queue."""


class WorkStatus(str, Enum):
    """Lifecycle state of a work item."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"

    @property
    def is_failure(self) -> bool:
        return self in (WorkStatus.FAILED, WorkStatus.DEAD)


@dataclass(slots=True, eq=False)
class WorkItem:
    """
    One proxied request and its outcome.

    Attributes
    ----------
    request_id:
        Generated primary key.
    correlation_id:
        Idempotency key; defaults to ``request_id``.
    queue_position:
        Pending count plus one at submission time. Not maintained afterwards.
    sequence:
        Monotonic submission counter used to break ``created_at`` ties.
    """

    request_id: str
    correlation_id: str
    method: str
    path: str
    query_params: Dict[str, QueryValue] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    status: WorkStatus = WorkStatus.PENDING
    result: Any = None
    result_status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0
    created_at: float = 0.0
    queue_position: int = 0
    sequence: int = 0

    def to_handler_request(self) -> HandlerRequest:
        return HandlerRequest(
            method=self.method,
            path=self.path,
            query_params=dict(self.query_params),
            headers=dict(self.headers),
            body=self.body,
        )


@dataclass(frozen=True, slots=True)
class QueueStats:
    """Point-in-time counts; ``failed`` includes ``dead`` items."""

    requests_total: int
    pending: int
    processing: int
    completed: int
    failed: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "requests_total": self.requests_total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
        }


@dataclass(frozen=True, slots=True)
class Submission:
    """
    Outcome of :meth:`RequestQueue.enqueue`.

    ``status`` and ``queue_position`` are read under the queue lock before the
    worker is woken, so they describe the item as submitted even if the worker
    has already moved it on by the time the caller looks.
    """

    item: WorkItem
    status: WorkStatus
    queue_position: int
    duplicate: bool = False

    @property
    def request_id(self) -> str:
        return self.item.request_id

    def as_dict(self) -> Dict[str, Any]:
        return {"request_id": self.request_id, "status": self.status.value, "queue_position": self.queue_position}


def _decode_body(value: Any) -> Optional[bytes]:
    if value is None or value == "":
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise SubmissionError("'body' must be a base64-encoded string.")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SubmissionError(f"'body' is not valid base64: {exc}") from exc


def _coerce_mapping(name: str, value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise SubmissionError(f"'{name}' must be an object.")
    return {str(key): item for key, item in value.items()}


def _coerce_headers(value: Any) -> Dict[str, str]:
    headers = _coerce_mapping("headers", value)
    for key, item in headers.items():
        if not isinstance(item, str):
            raise SubmissionError(f"Header '{key}' must be a string.")
    return headers


def _coerce_query(value: Any) -> Dict[str, QueryValue]:
    params = _coerce_mapping("query_params", value)
    for key, item in params.items():
        values = item if isinstance(item, (list, tuple)) else [item]
        for element in values:
            if element is not None and not isinstance(element, (str, int, float, bool)):
                raise SubmissionError(f"Query parameter '{key}' must be a scalar or a list of scalars.")
    return params


class RequestQueue:
    """
    FIFO work queue with idempotent submission and a single drain worker.

    Parameters
    ----------
    registry:
        Ordered handler registry used by the drain worker.
    idle_delay:
        Seconds the worker waits when nothing is pending.
    eviction_age:
        Age in seconds after which items are evicted regardless of state.
    sweep_interval:
        Seconds between eviction sweeps.
    protect_in_flight:
        Skip ``processing`` items during eviction. Off by default, which means a
        slow in-flight item can be evicted while the worker still holds it.
    clock:
        Wall-clock source for ``created_at``; injectable for tests.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        *,
        idle_delay: float = DEFAULT_IDLE_DELAY,
        eviction_age: float = DEFAULT_EVICTION_AGE,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        protect_in_flight: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.eviction_age = eviction_age
        self.protect_in_flight = protect_in_flight
        self._clock = clock
        self._items: Dict[str, WorkItem] = {}
        self._correlation_index: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._work_available = threading.Event()
        self._sequence = itertools.count(1)
        self.logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self.worker = DrainWorker(self, registry, idle_delay=idle_delay)
        self.sweeper = EvictionSweeper(self, interval=sweep_interval)

    @classmethod
    def from_settings(cls, settings: BridgeSettings, registry: HandlerRegistry) -> "RequestQueue":
        return cls(
            registry,
            idle_delay=settings.idle_delay,
            eviction_age=settings.eviction_age,
            sweep_interval=settings.sweep_interval,
            protect_in_flight=settings.protect_in_flight,
        )

    # ------------------------------------------------------------------ caller API

    def submit(self, payload: Mapping[str, Any]) -> WorkItem:
        """
        Enqueue a request, or return the existing item for a known correlation id.

        Raises
        ------
        SubmissionError
            When ``payload`` is malformed.
        """

        return self.enqueue(payload).item

    def enqueue(self, payload: Mapping[str, Any]) -> Submission:
        """Like :meth:`submit`, but also report the item's state at submission time."""

        if not isinstance(payload, Mapping):
            raise SubmissionError("Submission must be a JSON object.")

        path = payload.get("path")
        if not isinstance(path, str) or not path.strip():
            raise SubmissionError("'path' is required.")
        method = payload.get("method") or "GET"
        if not isinstance(method, str):
            raise SubmissionError("'method' must be a string.")
        correlation_id = payload.get("correlation_id")
        if correlation_id is not None and not isinstance(correlation_id, str):
            correlation_id = str(correlation_id)
        query_params = _coerce_query(payload.get("query_params"))
        headers = _coerce_headers(payload.get("headers"))
        body = _decode_body(payload.get("body"))

        with self._lock:
            if correlation_id:
                existing_id = self._correlation_index.get(correlation_id)
                existing = self._items.get(existing_id) if existing_id else None
                if existing is not None:
                    self.logger.debug(
                        "Duplicate submission returned existing item",
                        extra={"request_id": existing.request_id, "correlation_id": correlation_id},
                    )
                    position = existing.queue_position if existing.status is WorkStatus.PENDING else 0
                    return Submission(existing, existing.status, position, duplicate=True)

            request_id = str(uuid.uuid4())
            item = WorkItem(
                request_id=request_id,
                correlation_id=correlation_id or request_id,
                method=method.upper(),
                path=path,
                query_params=query_params,
                headers=headers,
                body=body,
                created_at=self._clock(),
                queue_position=self._count(WorkStatus.PENDING) + 1,
                sequence=next(self._sequence),
            )
            self._items[request_id] = item
            self._correlation_index[item.correlation_id] = request_id
            submission = Submission(item, item.status, item.queue_position)

        self.logger.debug(
            "Request queued",
            extra={"request_id": request_id, "method": item.method, "path": path, "position": submission.queue_position},
        )
        self._work_available.set()
        self.start()
        return submission

    def get(self, request_id: str) -> Optional[WorkItem]:
        """
        Look up an item; a ``completed`` item is removed as it is returned.

        A second lookup of a completed item is indistinguishable from an
        unknown id, so callers must keep the first result.
        """

        with self._lock:
            item = self._items.get(request_id)
            if item is not None and item.status is WorkStatus.COMPLETED:
                self._remove(item)
            return item

    def peek(self, request_id: str) -> Optional[WorkItem]:
        """Look up an item without consuming it."""

        with self._lock:
            return self._items.get(request_id)

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                requests_total=len(self._items),
                pending=self._count(WorkStatus.PENDING),
                processing=self._count(WorkStatus.PROCESSING),
                completed=self._count(WorkStatus.COMPLETED),
                failed=sum(1 for item in self._items.values() if item.status.is_failure),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> None:
        """Start the drain worker and the eviction sweeper unless already running."""

        self.sweeper.ensure_running()
        self.worker.ensure_running()

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Stop background threads. Items still queued are kept in memory."""

        self.worker.stop(timeout=0)
        self._work_available.set()
        self.worker.stop(timeout=timeout)
        self.sweeper.stop(timeout=timeout)

    def evict_stale(self, now: Optional[float] = None) -> int:
        """
        Remove items older than ``eviction_age`` regardless of state.

        ``processing`` items are included unless ``protect_in_flight`` is set;
        the worker then finishes the detached item and its outcome is dropped.
        """

        cutoff = (self._clock() if now is None else now) - self.eviction_age
        with self._lock:
            stale = [
                item
                for item in self._items.values()
                if item.created_at < cutoff and not (self.protect_in_flight and item.status is WorkStatus.PROCESSING)
            ]
            for item in stale:
                self._remove(item)
        if stale:
            self.logger.info("Evicted stale requests", extra={"count": len(stale)})
        return len(stale)

    # ------------------------------------------------------------------ worker API

    def claim_next(self) -> Optional[WorkItem]:
        """Move the oldest pending item to ``processing`` and return it."""

        with self._lock:
            pending = [item for item in self._items.values() if item.status is WorkStatus.PENDING]
            if not pending:
                return None
            item = min(pending, key=lambda candidate: (candidate.created_at, candidate.sequence))
            item.status = WorkStatus.PROCESSING
            item.attempts += 1
            return item

    def wait_for_work(self, timeout: float) -> None:
        """Block the calling worker until a submission arrives or ``timeout`` elapses."""

        self._work_available.wait(timeout)
        self._work_available.clear()

    def record_response(self, item: WorkItem, response: HandlerResponse) -> None:
        with self._lock:
            item.result = response.body
            item.result_status_code = response.status_code
            if response.error:
                item.status = WorkStatus.FAILED
                item.error = response.error
            else:
                item.status = WorkStatus.COMPLETED
                item.error = None
            evicted = self._items.get(item.request_id) is not item
        if evicted:
            self.logger.warning("Finished item was evicted while in flight", extra={"request_id": item.request_id})

    def record_failure(self, item: WorkItem, *, status_code: int, error: str) -> None:
        with self._lock:
            item.status = WorkStatus.FAILED
            item.result_status_code = status_code
            item.error = error

    # ------------------------------------------------------------------ internals

    def _count(self, status: WorkStatus) -> int:
        return sum(1 for item in self._items.values() if item.status is status)

    def _remove(self, item: WorkItem) -> None:
        self._items.pop(item.request_id, None)
        if self._correlation_index.get(item.correlation_id) == item.request_id:
            self._correlation_index.pop(item.correlation_id, None)
