"""Controller runtime: work queues, event routing and worker threads.

Every store change is turned into zero or more :class:`Request` keys and
queued on the controllers interested in it. A worker pops a key, runs the
reconciler once and either forgets the key (success), requeues it after a
delay (``Result.requeue_after``) or requeues it with per-key exponential
backoff (exception). The queue never hands the same key to two workers at
once, which is the only serialisation the reconcilers rely on.

Config (``controller`` section)::

    controller:
      namespace: ""       # "" = every namespace
      workers: 1          # worker threads per controller
      resync_s: 30.0      # periodic full re-enqueue, 0 disables
      backoff:
        base_s: 0.005
        max_s: 300.0
"""

from __future__ import annotations

import collections
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Type

from dronectl.resources import GROUP_VERSION, ObjectKey, Resource, get_controller_of
from dronectl.store import Store, WatchEvent

logger = logging.getLogger("DroneCtl.Manager")


@dataclass(frozen=True)
class Request:
    """Identity of the object one reconciliation pass works on."""

    namespace: str
    name: str

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def __str__(self) -> str:
        return str(self.key)


@dataclass
class Result:
    requeue: bool = False
    requeue_after: float = 0.0


class Reconciler(ABC):
    """One pass of fetch, diff and minimal correction for one key."""

    @abstractmethod
    def reconcile(self, request: Request) -> Result: ...


class RequestLogger(logging.LoggerAdapter):
    """Prefixes every line with the kind and key being reconciled."""

    def process(self, msg, kwargs):
        return f"[{self.extra['kind']} {self.extra['key']}] {msg}", kwargs


def request_logger(base: logging.Logger, kind: str, request: Request) -> RequestLogger:
    return RequestLogger(base, {"kind": kind, "key": str(request)})


# ---------------------------------------------------------------------------
# Work queue
# ---------------------------------------------------------------------------


class RateLimiter:
    """Per-item exponential backoff: ``base_s * 2**failures``, capped at ``max_s``."""

    def __init__(self, base_s: float = 0.005, max_s: float = 300.0) -> None:
        self.base_s = base_s
        self.max_s = max_s
        self._failures: Dict[Any, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Any) -> float:
        with self._lock:
            n = self._failures.get(item, 0)
            self._failures[item] = n + 1
        return min(self.base_s * (2**n), self.max_s)

    def forget(self, item: Any) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Any) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class WorkQueue:
    """Deduplicating FIFO of keys with per-key exclusivity.

    - an item already waiting is not queued twice;
    - an item added while a worker holds it is queued again on :meth:`done`.
    """

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, name: str = "") -> None:
        self.name = name
        self._limiter = rate_limiter or RateLimiter()
        self._cond = threading.Condition()
        self._queue: Deque[Any] = collections.deque()
        self._dirty: Set[Any] = set()
        self._processing: Set[Any] = set()
        self._timers: Set[threading.Timer] = set()
        self._shutting_down = False

    def add(self, item: Any) -> None:
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[Any]:
        """Pop the next item, waiting up to *timeout* seconds. ``None`` if none."""
        with self._cond:
            if not self._queue and not self._shutting_down:
                if timeout is None or timeout > 0:
                    self._cond.wait(timeout)
            if not self._queue:
                return None
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item

    def done(self, item: Any) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def add_after(self, item: Any, delay: float) -> None:
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            timer = threading.Timer(delay, self._fire, args=(item,))
            timer.daemon = True
            self._timers.add(timer)
        timer.start()

    def _fire(self, item: Any) -> None:
        with self._cond:
            self._timers = {t for t in self._timers if t.is_alive() and t is not threading.current_thread()}
        self.add(item)

    def add_rate_limited(self, item: Any) -> None:
        self.add_after(item, self._limiter.when(item))

    def forget(self, item: Any) -> None:
        self._limiter.forget(item)

    def num_requeues(self, item: Any) -> int:
        return self._limiter.num_requeues(item)

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    @property
    def pending_timers(self) -> int:
        with self._cond:
            return len(self._timers)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

EventMapper = Callable[[WatchEvent], Iterable[Request]]


class Controller:
    """Routes store events for one primary kind to a reconciler.

    Args:
        name: Used for logging and thread names.
        for_kind: Primary kind; its own events enqueue its own key.
        reconciler: Object with ``reconcile(request) -> Result``.
        owns: Kinds whose events enqueue their controlling ``for_kind`` owner.
        watches: ``(kind, mapper)`` pairs; the mapper turns an event into requests.
        workers: Number of worker threads started by :meth:`start`.
    """

    def __init__(
        self,
        name: str,
        for_kind: Type[Resource],
        reconciler: Reconciler,
        owns: Sequence[Type[Resource]] = (),
        watches: Sequence[Tuple[Type[Resource], EventMapper]] = (),
        workers: int = 1,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.name = name
        self.for_kind = for_kind
        self.reconciler = reconciler
        self.owns = list(owns)
        self.watches = list(watches)
        self.workers = max(1, int(workers))
        self.queue = WorkQueue(rate_limiter, name=name)
        self._threads: List[threading.Thread] = []
        self._running = False
        self._logger = logging.getLogger(f"DroneCtl.Controller.{name}")

    def requests_for(self, event: WatchEvent) -> List[Request]:
        obj = event.obj
        requests: List[Request] = []
        if obj.kind == self.for_kind.kind:
            requests.append(Request(obj.namespace, obj.name))
        if any(obj.kind == k.kind for k in self.owns):
            owner = get_controller_of(obj)
            if (
                owner is not None
                and owner.kind == self.for_kind.kind
                and owner.api_version == GROUP_VERSION
            ):
                requests.append(Request(obj.namespace, owner.name))
        for kind, mapper in self.watches:
            if obj.kind == kind.kind:
                requests.extend(mapper(event))
        return requests

    def handle_event(self, event: WatchEvent) -> None:
        for request in self.requests_for(event):
            self.queue.add(request)

    def process_next_item(self, timeout: Optional[float] = None) -> bool:
        """Reconcile one queued request. Returns False if the queue stayed empty."""
        request = self.queue.get(timeout)
        if request is None:
            return False
        try:
            self._reconcile_handler(request)
        finally:
            self.queue.done(request)
        return True

    def _reconcile_handler(self, request: Request) -> None:
        try:
            result = self.reconciler.reconcile(request)
        except Exception as exc:
            self._logger.error(
                f"Reconciler error for {self.for_kind.kind} {request} "
                f"(attempt {self.queue.num_requeues(request) + 1}): {exc}"
            )
            self.queue.add_rate_limited(request)
            return

        if result is not None and result.requeue_after > 0:
            self.queue.forget(request)
            self.queue.add_after(request, result.requeue_after)
        elif result is not None and result.requeue:
            self.queue.add_rate_limited(request)
        else:
            self.queue.forget(request)

    def start(self) -> None:
        """Start the worker threads.

        A queue shut down by an earlier :meth:`stop` is replaced with a fresh
        one that keeps the same rate limiter.
        """
        if self._running:
            return
        if self.queue.shutting_down:
            self.queue = WorkQueue(self.queue.rate_limiter, name=self.name)
        self._running = True
        for i in range(self.workers):
            t = threading.Thread(
                target=self._worker_loop, daemon=True, name=f"{self.name}-worker-{i}"
            )
            t.start()
            self._threads.append(t)
        self._logger.info(f"Controller '{self.name}' started with {self.workers} worker(s)")

    def _worker_loop(self) -> None:
        while self._running:
            self.process_next_item(timeout=0.1)

    def stop(self) -> None:
        self._running = False
        self.queue.shutdown()
        for t in self._threads:
            t.join(timeout=2)
        self._threads = []
        self._logger.info(f"Controller '{self.name}' stopped")


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class Manager:
    """Owns the store watch and the controllers fed by it."""

    def __init__(self, store: Store, config: Optional[Dict[str, Any]] = None) -> None:
        cfg = (config or {}).get("controller", {})
        backoff = cfg.get("backoff", {})
        self.store = store
        self.namespace: str = cfg.get("namespace", "") or ""
        self.workers: int = int(cfg.get("workers", 1))
        self.resync_s: float = float(cfg.get("resync_s", 30.0))
        self.backoff_base_s: float = float(backoff.get("base_s", 0.005))
        self.backoff_max_s: float = float(backoff.get("max_s", 300.0))

        self._controllers: List[Controller] = []
        self._watch_id: Optional[str] = None
        self._stop_event = threading.Event()
        self._resync_thread: Optional[threading.Thread] = None

    @property
    def controllers(self) -> List[Controller]:
        return list(self._controllers)

    def new_rate_limiter(self) -> RateLimiter:
        return RateLimiter(self.backoff_base_s, self.backoff_max_s)

    def add(self, controller: Controller) -> None:
        self._controllers.append(controller)
        if self._watch_id is None:
            self._watch_id = self.store.watch(self._dispatch)

    def _dispatch(self, event: WatchEvent) -> None:
        obj = event.obj
        if self.namespace and obj.namespaced and obj.namespace != self.namespace:
            return
        for controller in self._controllers:
            controller.handle_event(event)

    def enqueue_all(self) -> int:
        """Queue every primary object of every controller. Returns the count queued."""
        queued = 0
        for controller in self._controllers:
            for obj in self.store.list(controller.for_kind, namespace=self.namespace or None):
                controller.queue.add(Request(obj.namespace, obj.name))
                queued += 1
        return queued

    def reconcile_pending(self, max_items: int = 1000) -> int:
        """Drain the queues in the calling thread. Returns the number of passes run.

        Delayed requeues (backoff, ``requeue_after``) still fire from their
        timers and are processed by a later call.
        """
        processed = 0
        while processed < max_items:
            progressed = False
            for controller in self._controllers:
                if processed >= max_items:
                    break
                if controller.process_next_item(timeout=0):
                    processed += 1
                    progressed = True
            if not progressed:
                break
        return processed

    def start(self) -> None:
        self._stop_event.clear()
        if self._watch_id is None and self._controllers:
            self._watch_id = self.store.watch(self._dispatch)
        for controller in self._controllers:
            controller.start()
        queued = self.enqueue_all()
        logger.info(
            f"Started {len(self._controllers)} controller(s), "
            f"namespace={self.namespace or '<all>'}, {queued} initial request(s)"
        )
        if self.resync_s > 0:
            self._resync_thread = threading.Thread(
                target=self._resync_loop, daemon=True, name="resync"
            )
            self._resync_thread.start()

    def _resync_loop(self) -> None:
        while not self._stop_event.wait(self.resync_s):
            queued = self.enqueue_all()
            logger.debug(f"Periodic resync queued {queued} request(s)")

    def stop(self) -> None:
        self._stop_event.set()
        for controller in self._controllers:
            controller.stop()
        if self._resync_thread:
            self._resync_thread.join(timeout=2)
            self._resync_thread = None
        if self._watch_id is not None:
            self.store.unwatch(self._watch_id)
            self._watch_id = None
        logger.info("Manager stopped")
