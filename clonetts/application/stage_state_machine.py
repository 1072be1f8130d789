from __future__ import annotations

from collections.abc import Callable

from clonetts.application.observers import Broadcast
from clonetts.domain.vo.status import StageStatus
from clonetts.utils.logger import Logger


class StageStateMachine:
    """Status of one pipeline stage.

    Owned by a single stage and only mutated from the consumer thread.
    Observers are notified synchronously after the new value is committed,
    and only when the value actually changes.
    """

    def __init__(self, name: str, *, logger: Logger | None = None) -> None:
        self.name = name
        self.logger = logger
        self._status = StageStatus.INIT
        self._changed: Broadcast[StageStatus] = Broadcast()

    @property
    def status(self) -> StageStatus:
        return self._status

    def subscribe(self, observer: Callable[[StageStatus], None]) -> Callable[[], None]:
        return self._changed.subscribe(observer)

    def initialize(self) -> bool:
        if self._status is not StageStatus.INIT:
            self._log_invalid("initialize")
            return False
        self._set(StageStatus.LOADING)
        return True

    def load_succeeded(self) -> bool:
        if self._status is not StageStatus.LOADING:
            self._log_invalid("load_succeeded")
            return False
        self._set(StageStatus.READY)
        return True

    def load_failed(self, error: BaseException | str) -> bool:
        self._log(f"load failed: {error}")
        if self._status is not StageStatus.LOADING:
            self._log_invalid("load_failed")
            return False
        self._set(StageStatus.INIT)
        return True

    def begin_work(self, *, pipelined: bool = False) -> bool:
        if self._status is StageStatus.GENERATING and pipelined:
            return True
        if self._status is not StageStatus.READY:
            self._log_invalid("begin_work")
            return False
        self._set(StageStatus.GENERATING)
        return True

    def end_work(self) -> bool:
        if self._status is not StageStatus.GENERATING:
            self._log_invalid("end_work")
            return False
        self._set(StageStatus.READY)
        return True

    def fail(self, error: BaseException | str) -> None:
        self._log(f"fatal: {error}")
        self._set(StageStatus.ERROR)

    def reset(self) -> None:
        self._set(StageStatus.INIT)

    def _set(self, status: StageStatus) -> None:
        if self._status is status:
            return
        self._status = status
        self._changed.emit(status)

    def _log_invalid(self, operation: str) -> None:
        self._log(f"invalid status for {operation}: {self._status.value}")

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.log(f"[{self.name}] {message}")
