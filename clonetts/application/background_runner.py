from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor, Future, wait
from threading import Event, Lock
from typing import Generic, TypeVar

from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.errors import OperationCancelledError
from clonetts.utils.logger import Logger

P = TypeVar("P")
R = TypeVar("R")


class CancellationToken:
    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("operation cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


class BackgroundTaskRunner(Generic[P, R]):
    """Runs stage work on the shared worker pool and hands results to the consumer.

    ``work(payload, token)`` executes on a pool thread. Whatever it returns, or
    ``failed_result`` if it raised, is delivered to ``on_result`` through
    ``ConsumerExecutor.post``; worker code never touches pipeline state.
    """

    def __init__(
        self,
        *,
        consumer: ConsumerExecutor,
        pool: Executor,
        name: str,
        logger: Logger | None = None,
    ) -> None:
        self.consumer = consumer
        self.pool = pool
        self.name = name
        self.logger = logger

        self._lock = Lock()
        self._token = CancellationToken()
        self._futures: set[Future[None]] = set()

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._futures)

    def run_background(
        self,
        payload: P,
        work: Callable[[P, CancellationToken], R],
        on_result: Callable[[R], None],
        *,
        failed_result: R,
    ) -> Future[None]:
        with self._lock:
            token = self._token
            future = self.pool.submit(self._execute, payload, work, token, on_result, failed_result)
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def cancel(self) -> None:
        """Signal in-flight work to stop; later submissions get a fresh token."""

        with self._lock:
            self._token.cancel()
            self._token = CancellationToken()

    def stop(self, timeout: float | None = None) -> bool:
        """Cancel and block until every outstanding work item has returned.

        Returns False if ``timeout`` expired first.
        """

        self.cancel()
        with self._lock:
            futures = list(self._futures)
        if not futures:
            return True

        _, not_done = wait(futures, timeout=timeout)
        if not_done:
            self._log(f"{len(not_done)} background task(s) still running after stop")
            return False
        return True

    def _execute(
        self,
        payload: P,
        work: Callable[[P, CancellationToken], R],
        token: CancellationToken,
        on_result: Callable[[R], None],
        failed_result: R,
    ) -> None:
        try:
            result = work(payload, token)
        except OperationCancelledError:
            self._log("background task cancelled")
            result = failed_result
        except Exception as e:
            self._log(f"error in background task: {e!r}")
            result = failed_result
        self.consumer.post(on_result, result)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._futures.discard(future)

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.log(f"[{self.name}] {message}")
