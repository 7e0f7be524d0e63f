from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException, CustomObjectsApi

from journal_controller.src.kube import list_journals
from journal_controller.src.metrics import METRICS, ControllerMetrics
from journal_controller.src.reconciler import Reconciler
from journal_controller.src.resources import Journal, ResourceIdentity

LOGGER = logging.getLogger(__name__)


class WorkQueue:
    """Deduplicating, per-key serialized work queue with delayed requeue.

    Key internal state:
        ``_queue``
            FIFO of keys ready to be handed to a worker.
        ``_dirty``
            Keys that need a reconcile. A key is added to ``_queue`` at most
            once no matter how many times :meth:`add` is called.
        ``_processing``
            Keys currently held by a worker. A dirty key that is also
            processing is only put back on ``_queue`` by :meth:`done`, which
            is what keeps two reconciles of one key from overlapping.
        ``_deadlines``
            Maps keys to the monotonic time of their next scheduled wake.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        metrics: ControllerMetrics = METRICS,
    ) -> None:
        self._clock = clock
        self._metrics = metrics
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._deadlines: dict[Hashable, float] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._shutting_down

    def _update_gauge(self) -> None:
        self._metrics.pending_reconciles.set(len(self._dirty) + len(self._deadlines))

    def _add_locked(self, key: Hashable) -> None:
        if key in self._dirty:
            return
        self._dirty.add(key)
        self._deadlines.pop(key, None)
        if key not in self._processing:
            self._queue.append(key)
            self._cond.notify()
        self._update_gauge()

    def add(self, key: Hashable) -> None:
        """Request a reconcile of *key* as soon as possible."""
        with self._cond:
            if self._shutting_down:
                return
            self._add_locked(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        """Request a reconcile of *key* once *delay* seconds have passed.

        The new deadline replaces any earlier one for the key, since it
        comes from the most recent reconcile outcome.
        """
        with self._cond:
            if self._shutting_down:
                return
            if delay <= 0:
                self._add_locked(key)
                return
            self._deadlines[key] = self._clock() + delay
            self._update_gauge()
            self._cond.notify()

    def forget(self, key: Hashable) -> None:
        """Drop any scheduled wake for *key* (e.g. the resource was deleted)."""
        with self._cond:
            self._deadlines.pop(key, None)
            self._update_gauge()

    def scheduled_at(self, key: Hashable) -> float | None:
        with self._cond:
            return self._deadlines.get(key)

    def in_flight(self, key: Hashable) -> bool:
        with self._cond:
            return key in self._processing

    def _promote_due_locked(self, now: float) -> None:
        due = [key for key, due_at in self._deadlines.items() if due_at <= now]
        for key in due:
            del self._deadlines[key]
            self._add_locked(key)

    def get(self, timeout: float | None = None) -> Hashable | None:
        """Return the next key to reconcile and mark it in flight.

        Blocks until a key is ready, *timeout* seconds pass or the queue is
        shut down; the last two return ``None``.
        """
        with self._cond:
            give_up_at = None if timeout is None else self._clock() + timeout
            while True:
                if self._shutting_down:
                    return None
                now = self._clock()
                self._promote_due_locked(now)
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    self._update_gauge()
                    return key

                waits = []
                if give_up_at is not None:
                    if now >= give_up_at:
                        return None
                    waits.append(give_up_at - now)
                if self._deadlines:
                    waits.append(max(0.0, min(self._deadlines.values()) - now))
                self._cond.wait(timeout=min(waits) if waits else None)

    def done(self, key: Hashable) -> None:
        """Mark processing of *key* finished, re-queueing it if it went dirty meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def reset(self) -> None:
        """Re-open a queue after :meth:`shut_down`, dropping all queued work."""
        with self._cond:
            self._queue.clear()
            self._dirty.clear()
            self._deadlines.clear()
            self._shutting_down = False
            self._update_gauge()


class ReconcileScheduler:
    """Turns Journal watch notifications into serialized reconciles per identity.

    The scheduler is the controller's long-running driver:

    1. Lists Journals, caches the latest object per identity and queues each
       identity once. The list is retried with exponential backoff so
       transient API startup failures do not crash-loop the controller.
    2. Watches from the list's ``resourceVersion``. ADDED and MODIFIED
       replace the cached object and queue the identity; DELETED drops it.
    3. On ``410 Gone`` re-lists and queues every Journal again.
    4. On other transient errors backs off with jitter (capped at 30 s).
    5. ``workers`` threads take identities from the :class:`WorkQueue`,
       reconcile the cached object and schedule the returned delay.

    Because only the latest cached object is reconciled, a burst of
    notifications for one Journal results in one reconcile of its newest
    state. ``401`` / ``403`` responses stop the loop with a clear log message
    rather than retrying forever.
    """

    def __init__(
        self,
        custom_api: CustomObjectsApi,
        reconciler: Reconciler,
        namespace: str | None = None,
        workers: int = 4,
        queue: WorkQueue | None = None,
        metrics: ControllerMetrics = METRICS,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
        watch_timeout_seconds: int = 30,
        error_backoff_seconds: float = 360.0,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.custom_api = custom_api
        self.reconciler = reconciler
        self.namespace = namespace
        self.workers = workers
        self.queue = queue if queue is not None else WorkQueue(metrics=metrics)
        self.metrics = metrics
        self.watch_factory = watch_factory
        self.watch_timeout_seconds = watch_timeout_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.logger = LOGGER

        self._cache: dict[ResourceIdentity, Journal] = {}
        self._cache_lock = threading.Lock()
        self.ready = threading.Event()
        self._external_stop = threading.Event()
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()
        self._worker_threads: list[threading.Thread] = []

    # -- cache ---------------------------------------------------------------

    def cached(self, identity: ResourceIdentity) -> Journal | None:
        with self._cache_lock:
            return self._cache.get(identity)

    def _parse(self, obj: Any) -> Journal | None:
        if not isinstance(obj, dict):
            return None
        try:
            return Journal.from_dict(obj)
        except ValueError:
            self.logger.warning("Skipping Journal without name or namespace")
            return None

    def _sync_from_list(self, listing: Any) -> str | None:
        """Replace the cache with a full listing and queue every Journal in it."""
        items = (listing or {}).get("items") or []
        fresh: dict[ResourceIdentity, Journal] = {}
        for item in items:
            journal = self._parse(item)
            if journal is not None:
                fresh[journal.identity] = journal

        with self._cache_lock:
            removed = set(self._cache) - set(fresh)
            self._cache = fresh
        for identity in removed:
            self.queue.forget(identity)
        for identity in fresh:
            self.queue.add(identity)

        metadata = (listing or {}).get("metadata") or {}
        return metadata.get("resourceVersion")

    def handle_event(self, event_type: str, obj: Any) -> ResourceIdentity | None:
        """Apply one watch notification to the cache and queue.

        Returns the identity that was queued or forgotten, or ``None`` when
        the event was ignored.
        """
        if event_type not in {"ADDED", "MODIFIED", "DELETED"}:
            return None
        journal = self._parse(obj)
        if journal is None:
            return None

        identity = journal.identity
        if event_type == "DELETED":
            with self._cache_lock:
                self._cache.pop(identity, None)
            self.queue.forget(identity)
            self.logger.info("Journal %s deleted; no further reconciles scheduled", identity)
            return identity

        with self._cache_lock:
            self._cache[identity] = journal
        self.queue.add(identity)
        return identity

    # -- workers -------------------------------------------------------------

    def process_next(self, timeout: float | None = 1.0) -> bool:
        """Take one identity off the queue and reconcile it.

        Returns False when nothing was processed (timeout or shutdown). A
        Journal that is still cached afterwards always gets a next wake, even
        when the reconciler itself raised.
        """
        identity = self.queue.get(timeout=timeout)
        if identity is None:
            return False
        try:
            journal = self.cached(identity)
            if journal is None:
                return True
            delay = self.error_backoff_seconds
            try:
                delay = self.reconciler.run(journal).requeue_after
            except Exception:
                self.logger.exception("Unexpected error processing Journal %s", identity)
            # A DELETED event may have landed while the reconcile was running.
            if self.cached(identity) is not None:
                self.queue.add_after(identity, delay)
        finally:
            self.queue.done(identity)
        return True

    def _worker_loop(self, stop: threading.Event) -> None:
        while not self._should_stop(stop) and not self.queue.closed:
            self.process_next(timeout=1.0)

    def _start_workers(self, stop: threading.Event) -> None:
        self._worker_threads = [
            threading.Thread(
                target=self._worker_loop,
                args=(stop,),
                name=f"reconcile-worker-{index}",
                daemon=True,
            )
            for index in range(self.workers)
        ]
        for thread in self._worker_threads:
            thread.start()

    def _stop_workers(self, timeout: float = 5.0) -> None:
        self.queue.shut_down()
        for thread in self._worker_threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                self.logger.warning("Worker %s did not stop within %.0fs", thread.name, timeout)
        self._worker_threads = []

    # -- watch loop ----------------------------------------------------------

    def request_stop(self) -> None:
        """Request a cooperative stop and immediately interrupt any open watch stream."""
        self._external_stop.set()
        self.queue.shut_down()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._external_stop.is_set()

    def _list(self) -> Any:
        return list_journals(self.custom_api, namespace=self.namespace)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """List-then-watch Journals and dispatch reconciles until shutdown."""
        stop = shutdown_event or threading.Event()
        self._external_stop.clear()
        self.queue.reset()

        resource_version: str | None = None
        startup_backoff_seconds = 1
        while not self._should_stop(stop):
            try:
                resource_version = self._sync_from_list(self._list())
                self.ready.set()
                self.logger.info("Starting Journal watch from resourceVersion %s", resource_version)
                break
            except ApiException as exc:
                if exc.status in {401, 403}:
                    self.logger.error(
                        "Kubernetes API access denied during initial Journal list (status=%s). "
                        "Check controller RBAC and service account permissions.",
                        exc.status,
                    )
                    self.ready.clear()
                    return
                self.logger.exception("Initial Journal list failed")
                self.metrics.watch_errors_total.inc()
            except Exception:
                self.logger.exception("Unexpected error during initial Journal list")
                self.metrics.watch_errors_total.inc()

            jittered = startup_backoff_seconds * (0.5 + random.random())  # noqa: S311
            stop.wait(timeout=jittered)
            startup_backoff_seconds = min(startup_backoff_seconds * 2, 30)

        if self._should_stop(stop):
            self.ready.clear()
            return

        self._start_workers(stop)

        backoff_seconds = 1
        watch_stream_count = 0
        try:
            while not self._should_stop(stop):
                watcher = self.watch_factory()
                with self._watcher_lock:
                    self._active_watcher = watcher
                try:
                    if watch_stream_count > 0:
                        self.metrics.watch_reconnects_total.inc()
                    watch_stream_count += 1
                    stream = watcher.stream(
                        list_journals,
                        self.custom_api,
                        namespace=self.namespace,
                        resource_version=resource_version,
                        timeout_seconds=self.watch_timeout_seconds,
                    )

                    for event in stream:
                        if self._should_stop(stop):
                            break

                        event_type = str(event.get("type", ""))
                        obj = event.get("object")
                        if event_type == "ERROR":
                            code = obj.get("code") if isinstance(obj, dict) else None
                            raise ApiException(status=code or 500, reason="watch ERROR event")

                        metadata = obj.get("metadata") if isinstance(obj, dict) else None
                        if metadata and metadata.get("resourceVersion"):
                            resource_version = metadata["resourceVersion"]

                        self.handle_event(event_type=event_type, obj=obj)

                    backoff_seconds = 1
                except ApiException as exc:
                    # 410 Gone means etcd compacted past our resourceVersion.
                    if exc.status == 410:
                        self.logger.warning("Journal watch resource version expired, re-listing")
                        try:
                            resource_version = self._sync_from_list(self._list())
                        except ApiException as relist_exc:
                            if relist_exc.status in {401, 403}:
                                self.logger.error(
                                    "Kubernetes API access denied during 410 re-list (status=%s). "
                                    "Check controller RBAC and service account permissions.",
                                    relist_exc.status,
                                )
                                return
                            self.logger.exception("Failed to re-list Journals after 410")
                            self.metrics.watch_errors_total.inc()
                            resource_version = None
                        continue

                    if exc.status in {401, 403}:
                        self.logger.error(
                            "Kubernetes API watch denied (status=%s). "
                            "Check controller RBAC and service account permissions.",
                            exc.status,
                        )
                        self.metrics.watch_errors_total.inc()
                        return

                    self.logger.exception("Kubernetes API watch error")
                    self.metrics.watch_errors_total.inc()
                    jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                    stop.wait(timeout=jittered)
                    backoff_seconds = min(backoff_seconds * 2, 30)
                except Exception:
                    self.logger.exception("Unexpected Journal watch error")
                    self.metrics.watch_errors_total.inc()
                    jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                    stop.wait(timeout=jittered)
                    backoff_seconds = min(backoff_seconds * 2, 30)
                finally:
                    watcher.stop()
                    with self._watcher_lock:
                        if self._active_watcher is watcher:
                            self._active_watcher = None
        finally:
            self.ready.clear()
            self._stop_workers()
