from PySide6.QtWidgets import (
    QHBoxLayout,
    QLineEdit,
    QMainWindow,
    QPushButton,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from clonetts.domain.vo.status import PipelineStatus
from clonetts.presentation.pipeline_worker import PipelineWorker


class MainWindow(QMainWindow):
    def __init__(self, worker: PipelineWorker):
        super().__init__()
        self.worker = worker

        self.setWindowTitle("CloneTTS")
        self.resize(640, 420)

        self.text_input = QLineEdit()
        self.text_input.setPlaceholderText("Type something to say...")
        self.text_input.returnPressed.connect(self.on_speak)

        self.speak_button = QPushButton("Speak")
        self.speak_button.clicked.connect(self.on_speak)
        self.stop_button = QPushButton("Stop")
        self.stop_button.clicked.connect(self.on_stop)

        self.log_view = QTextEdit()
        self.log_view.setReadOnly(True)

        input_row = QHBoxLayout()
        input_row.addWidget(self.text_input)
        input_row.addWidget(self.speak_button)
        input_row.addWidget(self.stop_button)

        layout = QVBoxLayout()
        layout.addLayout(input_row)
        layout.addWidget(self.log_view)

        central = QWidget()
        central.setLayout(layout)
        self.setCentralWidget(central)

        self.statusBar().showMessage("Loading models...")
        self._set_controls(PipelineStatus.IDLE.value)

        self.worker.log.connect(self.append_log)
        self.worker.status_changed.connect(self.on_status_changed)
        self.worker.utterance_finished.connect(self.on_utterance_finished)
        self.worker.utterance_aborted.connect(self.on_utterance_aborted)

    def on_speak(self) -> None:
        text = self.text_input.text().strip()
        if not text:
            return
        self.worker.speak(text)

    def on_stop(self) -> None:
        self.worker.stop_speaking()

    def on_status_changed(self, status: str) -> None:
        self.statusBar().showMessage(status.replace("_", " ").capitalize())
        self._set_controls(status)

    def on_utterance_finished(self, text: str) -> None:
        self.text_input.clear()

    def on_utterance_aborted(self, reason: str) -> None:
        self.statusBar().showMessage(f"Could not speak: {reason}")

    def append_log(self, text: str):
        self.log_view.append(text)

    def closeEvent(self, event) -> None:
        self.worker.request_stop()
        self.worker.wait(3000)
        super().closeEvent(event)

    def _set_controls(self, status: str) -> None:
        self.speak_button.setEnabled(status == PipelineStatus.READY.value)
        self.stop_button.setEnabled(status == PipelineStatus.GENERATING.value)
