from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_rfc3339(value: datetime) -> str:
    """Render *value* as a compact UTC RFC 3339 string (e.g. ``2026-01-01T08:30:00Z``)."""
    aware = value if value.tzinfo else value.replace(tzinfo=UTC)
    return aware.astimezone(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Writers are preferred: once a writer is waiting, new readers queue
    behind it so a steady stream of status scrapes cannot starve the
    reconcile path.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


@dataclass(frozen=True)
class ControllerState:
    """In-memory controller state exposed on ``/``.

    ``reporter`` identifies this controller on Kubernetes Events and is
    deliberately left out of :meth:`to_dict`.
    """

    last_event: datetime
    reporter: str

    def to_dict(self) -> dict[str, Any]:
        return {"last_event": to_rfc3339(self.last_event)}


class SharedControllerState:
    """Process-wide :class:`ControllerState` guarded by a :class:`ReadWriteLock`.

    The record itself is immutable; writers swap in a new one while holding
    the write lock for that single assignment only.
    """

    def __init__(self, reporter: str = "engula-operator", now: datetime | None = None) -> None:
        self._lock = ReadWriteLock()
        self._state = ControllerState(last_event=now or utc_now(), reporter=reporter)

    def touch(self, now: datetime | None = None) -> None:
        """Record that a reconcile has just started."""
        timestamp = now or utc_now()
        with self._lock.write_locked():
            self._state = replace(self._state, last_event=timestamp)

    def snapshot(self) -> ControllerState:
        with self._lock.read_locked():
            return self._state

    @property
    def reporter(self) -> str:
        return self.snapshot().reporter
