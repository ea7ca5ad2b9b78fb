"""Batching windows that let callers wait for a burst of events to settle."""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

_QUEUE_SIZE = 1000


class _OpKind(Enum):
    ADD = "add"
    WAIT = "wait"


@dataclass
class _Op:
    kind: _OpKind
    key: Hashable
    done: Optional[threading.Event] = None


@dataclass
class _Window:
    started: float
    last_updated: float
    waiters: list[threading.Event] = field(default_factory=list)


class Batcher:
    """Manages one batching window per key.

    A window ends once no item has been added for ``idle_period`` seconds or
    once it has been open for ``max_period`` seconds; then all waiters return.
    """

    def __init__(self, max_period: float, idle_period: float) -> None:
        if idle_period <= 0:
            raise ValueError("idle_period must be positive")
        self.max_period = max_period
        self.idle_period = idle_period
        self._windows: dict[Hashable, _Window] = {}
        self._ops: Optional[queue.Queue[_Op]] = None
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def _tick(self) -> float:
        return self.idle_period / 2

    def __enter__(self) -> "Batcher":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Start the monitor; repeated calls have no effect."""
        if self._thread is not None and self._thread.is_alive():
            return
        ops: queue.Queue[_Op] = queue.Queue(maxsize=_QUEUE_SIZE)
        self._stopping.clear()
        self._ops = ops
        self._thread = threading.Thread(target=self._monitor, args=(ops,), daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """End every open window, release all waiters and stop the monitor."""
        thread = self._thread
        if thread is None:
            return
        self._ops = None
        self._stopping.set()
        thread.join()
        self._thread = None

    def add(self, key: Hashable) -> None:
        """Start a window for the key or extend the open one; never blocks."""
        ops = self._ops
        if ops is None:
            return
        try:
            ops.put_nowait(_Op(_OpKind.ADD, key))
        except queue.Full:
            pass

    def wait(self, key: Hashable) -> None:
        """Block until the window for the key ends, starting one if needed."""
        ops = self._ops
        if ops is None:
            time.sleep(self.max_period)
            return
        op = _Op(_OpKind.WAIT, key, threading.Event())
        try:
            ops.put(op, timeout=self.max_period)
        except queue.Full:
            return
        while not op.done.wait(self._tick):
            if self._ops is not ops:
                return

    def _monitor(self, ops: queue.Queue[_Op]) -> None:
        next_tick = time.monotonic() + self._tick
        while not self._stopping.is_set():
            try:
                op: Optional[_Op] = ops.get(timeout=max(0.0, next_tick - time.monotonic()))
            except queue.Empty:
                op = None
            now = time.monotonic()
            if op is not None:
                self._apply(op, now)
            if now >= next_tick:
                self._end_expired(now)
                next_tick = now + self._tick
        for key in list(self._windows):
            self._end_window(key)
        while True:
            try:
                pending = ops.get_nowait()
            except queue.Empty:
                break
            if pending.done is not None:
                pending.done.set()

    def _apply(self, op: _Op, now: float) -> None:
        if op.kind is _OpKind.ADD:
            self._start_or_update_window(op.key, now)
            return
        window = self._windows.get(op.key)
        if window is None:
            window = self._start_or_update_window(op.key, now)
        window.waiters.append(op.done)

    def _end_expired(self, now: float) -> None:
        for key, window in list(self._windows.items()):
            if now - window.last_updated < self.idle_period and now - window.started < self.max_period:
                continue
            self._end_window(key)

    def _end_window(self, key: Hashable) -> None:
        window = self._windows.pop(key)
        for waiter in window.waiters:
            waiter.set()

    def _start_or_update_window(self, key: Hashable, now: float) -> _Window:
        window = self._windows.get(key)
        if window is None:
            window = _Window(started=now, last_updated=now)
            self._windows[key] = window
        else:
            window.last_updated = now
        return window