from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from queue import Empty, Queue
from threading import Event, Lock, Thread, get_ident
from time import monotonic
from typing import Any, NamedTuple

from clonetts.utils.logger import Logger


class _Task(NamedTuple):
    fn: Callable[..., Any]
    args: tuple[Any, ...]


class Waiter:
    """A level-triggered wait: ``callback`` runs on the first tick where ``predicate`` holds."""

    def __init__(self, predicate: Callable[[], bool], callback: Callable[[], None]) -> None:
        self.predicate = predicate
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        self.active = False


class ConsumerExecutor:
    """Single-consumer execution context that owns all mutable pipeline state.

    Any thread may ``post`` work; exactly one thread at a time drains the queue,
    either a dedicated thread (``start``) or the caller (``run_pending`` /
    ``run_until``). Waiters registered with ``when`` are re-evaluated after every
    task and on every idle poll tick, so predicates over state owned by other
    threads (e.g. playback) are picked up without explicit signaling.
    """

    POLL_INTERVAL_SECONDS = 0.02

    def __init__(
        self,
        *,
        logger: Logger | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.logger = logger
        self.poll_interval = poll_interval or self.POLL_INTERVAL_SECONDS

        self._queue: Queue[_Task] = Queue()
        self._waiters: list[Waiter] = []
        self._waiters_lock = Lock()

        self._owner_lock = Lock()
        self._consumer_ident: int | None = None

        self._thread: Thread | None = None
        self._stop_event = Event()

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        self._queue.put(_Task(fn, args))

    def when(self, predicate: Callable[[], bool], callback: Callable[[], None]) -> Waiter:
        waiter = Waiter(predicate, callback)
        with self._waiters_lock:
            self._waiters.append(waiter)
        return waiter

    def cancel_waiters(self) -> None:
        with self._waiters_lock:
            for waiter in self._waiters:
                waiter.cancel()
            self._waiters.clear()

    @property
    def pending_waiters(self) -> int:
        with self._waiters_lock:
            return sum(1 for waiter in self._waiters if waiter.active)

    def is_consumer_thread(self) -> bool:
        return self._consumer_ident == get_ident()

    def run_pending(self) -> int:
        """Drain queued tasks and settle waiters on the calling thread.

        Returns the number of tasks executed.
        """

        executed = 0
        with self._consuming():
            while True:
                drained = self._drain_nowait()
                fired = self._poll_waiters()
                executed += drained
                if drained == 0 and fired == 0:
                    break
        return executed

    def run_until(self, predicate: Callable[[], bool], timeout: float | None = None) -> bool:
        """Consume on the calling thread until ``predicate`` holds or ``timeout`` expires."""

        deadline = None if timeout is None else monotonic() + timeout
        with self._consuming():
            while True:
                self._poll_waiters()
                if predicate():
                    return True

                wait = self.poll_interval
                if deadline is not None:
                    remaining = deadline - monotonic()
                    if remaining <= 0:
                        return False
                    wait = min(wait, remaining)

                try:
                    task = self._queue.get(timeout=wait)
                except Empty:
                    continue
                self._run_task(task)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = Thread(target=self._run_forever, name="clonetts-consumer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 2.0) -> None:
        self._stop_event.set()
        # Wake the loop if it is blocked on an empty queue.
        self.post(lambda: None)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run_forever(self) -> None:
        with self._consuming():
            while not self._stop_event.is_set():
                try:
                    task = self._queue.get(timeout=self.poll_interval)
                except Empty:
                    self._poll_waiters()
                    continue
                self._run_task(task)
                self._poll_waiters()

    @contextmanager
    def _consuming(self) -> Iterator[None]:
        ident = get_ident()
        with self._owner_lock:
            if self._consumer_ident not in (None, ident):
                raise RuntimeError("ConsumerExecutor is already being drained by another thread.")
            nested = self._consumer_ident == ident
            self._consumer_ident = ident
        try:
            yield
        finally:
            if not nested:
                with self._owner_lock:
                    self._consumer_ident = None

    def _drain_nowait(self) -> int:
        executed = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except Empty:
                return executed
            self._run_task(task)
            executed += 1

    def _run_task(self, task: _Task) -> None:
        try:
            task.fn(*task.args)
        except Exception as e:
            self._log(f"[Consumer] task {getattr(task.fn, '__name__', task.fn)!s} failed: {e!r}")

    def _poll_waiters(self) -> int:
        with self._waiters_lock:
            waiters = [waiter for waiter in self._waiters if waiter.active]
            self._waiters = waiters[:]

        fired = 0
        for waiter in waiters:
            # A previous callback in this pass may have cancelled it.
            if not waiter.active:
                continue
            try:
                ready = waiter.predicate()
            except Exception as e:
                self._log(f"[Consumer] wait predicate failed: {e!r}")
                waiter.cancel()
                continue
            if not ready:
                continue

            waiter.cancel()
            fired += 1
            try:
                waiter.callback()
            except Exception as e:
                self._log(f"[Consumer] wait callback failed: {e!r}")

        with self._waiters_lock:
            self._waiters = [waiter for waiter in self._waiters if waiter.active]
        return fired

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.log(message)
