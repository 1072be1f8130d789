from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor
from typing import Any, Generic, NamedTuple, Protocol, TypeVar

from clonetts.application.background_runner import BackgroundTaskRunner, CancellationToken
from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.errors import FatalEngineError
from clonetts.application.stage_state_machine import StageStateMachine
from clonetts.domain.vo.status import StageStatus
from clonetts.utils.logger import Logger


class _Engine(Protocol):
    def config_errors(self) -> list[str]:
        ...

    def load(self) -> None:
        ...

    def close(self) -> None:
        ...


E = TypeVar("E", bound=_Engine)


class _LoadOutcome(NamedTuple):
    resource: Any
    error: BaseException | None


class EngineStage(Generic[E]):
    """One pipeline stage: an engine, its status, and its background runner.

    All public methods must be called on the consumer thread. Results of work
    dispatched before a ``reset``/``fail`` are dropped (tracked by epoch).
    """

    def __init__(
        self,
        *,
        name: str,
        engine: E,
        consumer: ConsumerExecutor,
        pool: Executor,
        logger: Logger | None = None,
    ) -> None:
        self.name = name
        self.engine = engine
        self.consumer = consumer
        self.logger = logger
        self.state = StageStateMachine(name, logger=logger)
        self.runner: BackgroundTaskRunner[Any, Any] = BackgroundTaskRunner(
            consumer=consumer,
            pool=pool,
            name=name,
            logger=logger,
        )
        self._loaded = False
        self._epoch = 0

    @property
    def status(self) -> StageStatus:
        return self.state.status

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def subscribe_status(self, observer: Callable[[StageStatus], None]) -> Callable[[], None]:
        return self.state.subscribe(observer)

    def config_errors(self) -> list[str]:
        return list(self.engine.config_errors())

    def initialize(self) -> bool:
        errors = self.config_errors()
        if errors:
            for error in errors:
                self._log(f"path not set: {error}")
            return False

        if not self.state.initialize():
            return False

        self._log("Load model")
        return self._dispatch(
            None,
            self._load_work,
            self._on_load_finished,
            failed_result=_LoadOutcome(None, RuntimeError("load task failed")),
        )

    def cancel(self) -> None:
        self.runner.cancel()

    def fail(self, error: BaseException | str) -> None:
        self._epoch += 1
        self.runner.cancel()
        self.state.fail(error)

    def reset(self, timeout: float | None = 5.0) -> None:
        """Explicit re-initialization: stop work, release the engine, back to INIT."""

        self._epoch += 1
        self.runner.stop(timeout)
        self._release()
        self._on_reset()
        self.state.reset()

    def teardown(self, timeout: float | None = 5.0) -> None:
        self._epoch += 1
        self.runner.stop(timeout)
        self._release()

    def _load(self, token: CancellationToken) -> Any:
        """Load the engine on a worker thread; the return value is handed to ``_adopt``."""
        self.engine.load()
        return None

    def _adopt(self, resource: Any) -> None:
        pass

    def _on_reset(self) -> None:
        pass

    def _dispatch(
        self,
        payload: Any,
        work: Callable[[Any, CancellationToken], Any],
        on_result: Callable[[Any], None],
        *,
        failed_result: Any,
    ) -> bool:
        epoch = self._epoch

        def guarded(item: Any, token: CancellationToken) -> Any:
            try:
                return work(item, token)
            except FatalEngineError as e:
                self.consumer.post(self._on_fatal, epoch, e)
                raise

        def deliver(result: Any) -> None:
            if epoch != self._epoch:
                self._log("dropping result of cancelled work")
                return
            on_result(result)

        try:
            self.runner.run_background(payload, guarded, deliver, failed_result=failed_result)
        except RuntimeError as e:
            # The worker pool is shut down; nothing will ever complete here.
            self.fail(e)
            return False
        return True

    def _load_work(self, _: Any, token: CancellationToken) -> _LoadOutcome:
        try:
            return _LoadOutcome(self._load(token), None)
        except Exception as e:
            self._close_engine()
            return _LoadOutcome(None, e)

    def _on_load_finished(self, outcome: _LoadOutcome) -> None:
        if self.state.status is not StageStatus.LOADING:
            return
        if outcome.error is not None:
            self._loaded = False
            self.state.load_failed(outcome.error)
            return

        self._adopt(outcome.resource)
        self._loaded = True
        self._log("Load model done")
        self.state.load_succeeded()

    def _on_fatal(self, epoch: int, error: FatalEngineError) -> None:
        if epoch != self._epoch:
            return
        self.fail(error)

    def _release(self) -> None:
        self._loaded = False
        self._close_engine()

    def _close_engine(self) -> None:
        try:
            self.engine.close()
        except Exception as e:
            self._log(f"error while releasing engine: {e!r}")

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.log(f"[{self.name}] {message}")
