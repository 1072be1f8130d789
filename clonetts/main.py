from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_sys_path() -> None:
	# Allow running both:
	# - python -m clonetts.main
	# - python clonetts/main.py
	if __package__:
		return
	repo_root = str(Path(__file__).resolve().parents[1])
	if repo_root not in sys.path:
		sys.path.insert(0, repo_root)


def _read_text(text: str | None) -> str:
	if text:
		return text.strip()
	if sys.stdin.isatty():
		return input("> ").strip()
	return sys.stdin.read().strip()


def _run_gui(container) -> int:
	from PySide6.QtWidgets import QApplication

	from clonetts.presentation.main_window import MainWindow
	from clonetts.presentation.pipeline_worker import PipelineWorker

	app = QApplication(sys.argv)
	worker = PipelineWorker(container.orchestrator, container.consumer, container.logger)
	window = MainWindow(worker)
	window.show()
	worker.start()

	exit_code = app.exec()
	worker.request_stop()
	worker.wait()
	return exit_code


def _run_once(container, text: str, timeout: float) -> int:
	from clonetts.domain.vo.status import PipelineStatus

	orchestrator = container.orchestrator
	consumer = container.consumer
	finished: list[str] = []
	aborted: list[str] = []
	orchestrator.utterance_finished.subscribe(lambda request: finished.append(request.text))
	orchestrator.utterance_aborted.subscribe(aborted.append)

	errors = orchestrator.config_errors()
	if errors:
		for error in errors:
			print(f"Config error: path not set: {error}", file=sys.stderr)
		return 2

	orchestrator.initialize()
	consumer.run_until(
		lambda: orchestrator.status in (PipelineStatus.READY, PipelineStatus.ERROR),
		timeout=timeout,
	)
	if orchestrator.status is not PipelineStatus.READY:
		print(f"Pipeline failed to initialize ({orchestrator.status.value}).", file=sys.stderr)
		return 1

	orchestrator.prompt(text)
	done = consumer.run_until(
		lambda: bool(finished or aborted) or orchestrator.status is PipelineStatus.ERROR,
		timeout=timeout,
	)
	if not done:
		print("Timed out waiting for speech.", file=sys.stderr)
		return 1
	if orchestrator.status is PipelineStatus.ERROR:
		print("Pipeline error; see the log above.", file=sys.stderr)
		return 1
	if aborted:
		print(f"Could not speak: {aborted[0]}", file=sys.stderr)
		return 1
	return 0


def main(argv: list[str] | None = None) -> int:
	_ensure_repo_root_on_sys_path()

	from dataclasses import replace

	from clonetts.config import AppConfig
	from clonetts.di_container import build_container
	from clonetts.utils.args import parse_args
	from clonetts.utils.env import load_dotenv
	from clonetts.utils.logger import Logger

	args = parse_args(sys.argv[1:] if argv is None else argv)
	load_dotenv(args.env_file)

	try:
		config = AppConfig.from_env()
		if args.chunk_size is not None:
			if args.chunk_size <= 0:
				raise ValueError("--chunk-size must be positive.")
			config = replace(config, streaming=replace(config.streaming, chunk_size=args.chunk_size))
	except ValueError as exc:
		print(f"Config error: {exc}", file=sys.stderr)
		return 2

	logger = Logger()
	player = None
	if args.no_playback:
		from clonetts.infrastructure.audio.buffer_player import BufferingPlayer

		player = BufferingPlayer()

	container = build_container(config, logger=logger, player=player)

	try:
		if args.gui:
			return _run_gui(container)

		logger.on_emit = lambda line: print(line, file=sys.stderr)
		text = _read_text(args.text)
		if not text:
			print("Nothing to say.", file=sys.stderr)
			return 2
		return _run_once(container, text, args.timeout)
	finally:
		container.close()
		logger.save()


if __name__ == "__main__":
	raise SystemExit(main())
