from PySide6.QtCore import QThread, Signal

from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.pipeline_orchestrator import PipelineOrchestrator
from clonetts.domain.vo.status import PipelineStatus
from clonetts.domain.vo.utterance import UtteranceRequest
from clonetts.utils.logger import Logger


class PipelineWorker(QThread):
    """Hosts the consumer executor; every pipeline callback runs on this thread."""

    log = Signal(str)
    status_changed = Signal(str)
    utterance_finished = Signal(str)
    utterance_aborted = Signal(str)

    def __init__(self, orchestrator: PipelineOrchestrator, consumer: ConsumerExecutor, logger: Logger):
        super().__init__()
        self.orchestrator = orchestrator
        self.consumer = consumer
        self._stopping = False

        logger.on_emit = self.log.emit

        # Bridge pipeline events to the UI.
        self.orchestrator.status_changed.subscribe(self._on_status)
        self.orchestrator.utterance_finished.subscribe(self._on_finished)
        self.orchestrator.utterance_aborted.subscribe(self.utterance_aborted.emit)

    def speak(self, text: str) -> None:
        self.orchestrator.prompt(text)

    def stop_speaking(self) -> None:
        self.orchestrator.stop()

    def request_stop(self) -> None:
        self._stopping = True

    def run(self) -> None:
        self.orchestrator.initialize()
        try:
            self.consumer.run_until(lambda: self._stopping)
        except Exception as e:
            self.log.emit(f"Unexpected error: {e}")

    def _on_status(self, status: PipelineStatus) -> None:
        self.status_changed.emit(status.value)

    def _on_finished(self, request: UtteranceRequest) -> None:
        self.utterance_finished.emit(request.text)
