"""Unit tests for PipelineOrchestrator sequencing, errors and reset."""
from __future__ import annotations

import io
import json
import tempfile
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from contextlib import redirect_stderr
from pathlib import Path
from types import SimpleNamespace

import numpy as np
from fakes import FakeCodecDecoder, FakeLanguageModel, FakePhonemeModel, FakePlayer, InlinePool, ManualPool

from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.decoder_stage import DecoderStage
from clonetts.application.errors import FatalEngineError
from clonetts.application.phonemizer_stage import PhonemizerStage
from clonetts.application.pipeline_orchestrator import PipelineOrchestrator
from clonetts.application.token_generator_stage import TokenGeneratorStage
from clonetts.domain.vo.status import PipelineStatus, StageStatus
from clonetts.infrastructure.local.path_resolver import MountPathResolver
from clonetts.main import _run_once
from clonetts.utils.logger import Logger


class TestPipelineOrchestrator(unittest.TestCase):
    """Test cases for PipelineOrchestrator."""

    def setUp(self):
        """Set up test fixtures."""
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        base = Path(self.tmp.name)
        (base / "reference.json").write_text(json.dumps([3, 7, 9]), encoding="utf-8")
        (base / "reference.txt").write_text("hello world\n", encoding="utf-8")

        self.logger = Logger()
        self.consumer = ConsumerExecutor(logger=self.logger)
        self.pool = InlinePool()
        self.player = FakePlayer()
        self.phoneme_model = FakePhonemeModel()
        self.language_model = FakeLanguageModel(["<|speech_1|>", "<|speech_2|>"])
        self.codec = FakeCodecDecoder(samples_per_code=4)

    def _build(self, *, generator_pool=None, reference_tokens="reference.json", **kwargs):
        consumer = self.consumer
        self.phonemizer = PhonemizerStage(
            engine=self.phoneme_model, consumer=consumer, pool=self.pool, logger=self.logger
        )
        self.generator = TokenGeneratorStage(
            engine=self.language_model, consumer=consumer, pool=generator_pool or self.pool, logger=self.logger
        )
        self.decoder = DecoderStage(engine=self.codec, consumer=consumer, pool=self.pool, logger=self.logger)
        orchestrator = PipelineOrchestrator(
            phonemizer=self.phonemizer,
            generator=self.generator,
            decoder=self.decoder,
            player=self.player,
            consumer=consumer,
            pool=self.pool,
            path_resolver=MountPathResolver(self.tmp.name),
            reference_audio_tokens_path=reference_tokens,
            reference_transcript_path="reference.txt",
            logger=self.logger,
            **kwargs,
        )
        self.statuses = []
        self.frames = []
        self.finished = []
        self.aborted = []
        orchestrator.status_changed.subscribe(self.statuses.append)
        orchestrator.frame_delivered.subscribe(self.frames.append)
        orchestrator.utterance_finished.subscribe(self.finished.append)
        orchestrator.utterance_aborted.subscribe(self.aborted.append)
        return orchestrator

    def _ready(self, **kwargs):
        orchestrator = self._build(**kwargs)
        orchestrator.initialize()
        self.consumer.run_pending()
        self.assertIs(orchestrator.status, PipelineStatus.READY)
        return orchestrator

    def test_initialize_encodes_reference_voice(self):
        """Test that initialize loads every stage and phonemizes the reference transcript."""
        orchestrator = self._ready()

        self.assertEqual(
            self.statuses,
            [PipelineStatus.INITIALIZING, PipelineStatus.PHONEMIZING_REFERENCE, PipelineStatus.READY],
        )
        reference = orchestrator.reference
        self.assertEqual(reference.transcript_phonemes, "/hello/ /world/")
        self.assertEqual(reference.audio_text, "<|speech_3|><|speech_7|><|speech_9|>")
        self.assertEqual(reference.codes, (3, 7, 9))
        self.assertTrue(all(stage.status is StageStatus.READY for stage in orchestrator.stages))

    def test_prompt_runs_full_utterance(self):
        """Test the phonemize, generate, decode and play sequence for one prompt."""
        orchestrator = self._ready()
        self.statuses.clear()
        self.player.playing = True

        orchestrator.prompt("testing")
        self.consumer.run_pending()

        prompt = self.language_model.prompts[0]
        self.assertIn("/hello/ /world/ /testing/", prompt)
        self.assertTrue(prompt.endswith("<|speech_3|><|speech_7|><|speech_9|>"))
        self.assertEqual(self.codec.calls, [[1, 2]])
        self.assertEqual(len(self.player.played), 1)
        np.testing.assert_array_equal(self.player.played[0], [1, 1, 1, 1, 2, 2, 2, 2])
        self.assertEqual(len(self.frames), 1)

        # Still playing: the utterance is not finished yet.
        self.assertIs(orchestrator.status, PipelineStatus.PLAYING)
        self.assertEqual(self.finished, [])

        self.player.playing = False
        self.consumer.run_pending()

        self.assertEqual(
            self.statuses,
            [
                PipelineStatus.PHONEMIZING_PROMPT,
                PipelineStatus.GENERATING,
                PipelineStatus.DECODING,
                PipelineStatus.PLAYING,
                PipelineStatus.READY,
            ],
        )
        self.assertEqual(len(self.finished), 1)
        self.assertEqual(self.finished[0].text, "testing")
        self.assertEqual(self.finished[0].clone.reference_transcript, "hello world")
        self.assertIsNone(orchestrator.current_request)

    def test_chunks_are_submitted_while_generating(self):
        """Test that each full chunk reaches the decoder during generation."""
        orchestrator = self._ready(chunk_size=1)

        orchestrator.prompt("go")
        self.consumer.run_pending()

        self.assertEqual(self.codec.calls, [[1], [2]])
        np.testing.assert_array_equal(np.concatenate(self.player.played), [1, 1, 1, 1, 2, 2, 2, 2])

    def test_overlapping_windows_are_reconstructed(self):
        """Test overlap-add output when windows share codes."""
        self.language_model.tokens = ["<|speech_1|>", "<|speech_2|>", "<|speech_3|>"]
        self.codec.samples_per_code = 2
        orchestrator = self._ready(chunk_size=1, overlap=1, hop_length=2)

        orchestrator.prompt("go")
        self.consumer.run_pending()

        self.assertEqual(self.codec.calls, [[1, 2], [2, 3]])
        np.testing.assert_allclose(np.concatenate(self.frames), [1, 1, 2, 2, 3, 3], rtol=1e-6)
        self.assertIs(orchestrator.status, PipelineStatus.READY)

    def test_multi_code_pieces_keep_overlap_stride(self):
        """Test that streamed pieces carrying several or no codes still give one code per window slot."""
        self.language_model.tokens = ["<|speech_1|><|speech_2|>", " ", "<|speech_3|>"]
        self.codec.samples_per_code = 2
        orchestrator = self._ready(chunk_size=1, overlap=1, hop_length=2)

        orchestrator.prompt("go")
        self.consumer.run_pending()

        self.assertEqual(self.codec.calls, [[1, 2], [2, 3]])
        np.testing.assert_allclose(np.concatenate(self.frames), [1, 1, 2, 2, 3, 3], rtol=1e-6)
        self.assertIs(orchestrator.status, PipelineStatus.READY)

    def test_prompt_before_ready_is_ignored(self):
        """Test that prompting an uninitialized pipeline does nothing."""
        orchestrator = self._build()

        orchestrator.prompt("too early")
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.IDLE)
        self.assertEqual(self.phoneme_model.words, [])
        self.assertIn("[Pipeline] invalid status for prompt: idle", self.logger.lines)

    def test_missing_paths_keep_pipeline_idle(self):
        """Test that configuration errors are reported and nothing loads."""
        orchestrator = self._build(reference_tokens=None)

        self.assertEqual(orchestrator.config_errors(), ["reference audio tokens"])
        orchestrator.initialize()
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.IDLE)
        self.assertEqual(self.pool.submitted, 0)
        self.assertIn("[Pipeline] path not set: reference audio tokens", self.logger.lines)

    def test_stage_load_failure_is_error(self):
        """Test that a stage failing to load puts the pipeline in ERROR."""
        self.language_model.fail_load = True
        orchestrator = self._build()

        orchestrator.initialize()
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.ERROR)
        self.assertIs(self.generator.status, StageStatus.INIT)
        self.assertIn("[ERROR] [Pipeline] failed to load: Backbone", self.logger.lines)

    def test_unreadable_reference_is_error(self):
        """Test that a missing reference file puts the pipeline in ERROR."""
        orchestrator = self._build(reference_tokens="missing.json")

        orchestrator.initialize()
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.ERROR)
        self.assertIsNone(orchestrator.reference)

    def test_stage_error_cascades(self):
        """Test that a stage in ERROR drives the pipeline to ERROR and stops playback."""
        orchestrator = self._ready()

        def fatal(codes):
            raise FatalEngineError("codec session lost")

        self.codec.decode = fatal
        orchestrator.prompt("testing")
        self.consumer.run_pending()

        self.assertIs(self.decoder.status, StageStatus.ERROR)
        self.assertIs(orchestrator.status, PipelineStatus.ERROR)
        self.assertEqual(self.player.played, [])
        self.assertGreaterEqual(self.player.interrupted, 1)
        self.assertEqual(self.finished, [])

    def test_prompt_without_phonemes_aborts_utterance(self):
        """Test that a prompt with no phonemes returns to READY and reports the abort."""
        orchestrator = self._ready()
        self.phoneme_model.infer = lambda word, lang: ""

        orchestrator.prompt("testing")
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.READY)
        self.assertEqual(self.aborted, ["prompt produced no phonemes"])
        self.assertEqual(self.finished, [])
        self.assertEqual(self.language_model.prompts, [])

    def test_cli_run_exits_when_utterance_is_aborted(self):
        """Test that the single-utterance CLI run fails fast on an aborted utterance."""
        orchestrator = self._build()
        self.phoneme_model.infer = lambda word, lang: "" if word == "testing" else f"/{word}/"
        container = SimpleNamespace(orchestrator=orchestrator, consumer=self.consumer)
        stderr = io.StringIO()

        started = time.monotonic()
        with redirect_stderr(stderr):
            exit_code = _run_once(container, "testing", timeout=30.0)

        self.assertEqual(exit_code, 1)
        self.assertLess(time.monotonic() - started, 5.0)
        self.assertIn("Could not speak: prompt produced no phonemes", stderr.getvalue())

    def test_phonemizer_fatal_error_cascades(self):
        """Test that a fatal phonemizer fault during a prompt puts the pipeline in ERROR."""
        orchestrator = self._ready()

        def fatal(word, lang):
            raise FatalEngineError("phonemizer session lost")

        self.phoneme_model.infer = fatal
        orchestrator.prompt("testing")
        self.consumer.run_pending()

        self.assertIs(self.phonemizer.status, StageStatus.ERROR)
        self.assertIs(orchestrator.status, PipelineStatus.ERROR)
        self.assertEqual(self.language_model.prompts, [])
        self.assertEqual(self.aborted, [])

    def test_stop_ends_generation_and_returns_to_ready(self):
        """Test that stop cancels an in-flight generation."""
        generator_pool = ManualPool()
        orchestrator = self._build(generator_pool=generator_pool)
        orchestrator.initialize()
        self.consumer.run_pending()
        generator_pool.run_all()
        self.consumer.run_pending()
        self.assertIs(orchestrator.status, PipelineStatus.READY)

        orchestrator.prompt("testing")
        self.consumer.run_pending()
        self.assertIs(orchestrator.status, PipelineStatus.GENERATING)

        orchestrator.stop()
        self.consumer.run_pending()
        generator_pool.run_all()
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.READY)
        self.assertEqual(self.codec.calls, [])
        self.assertEqual(len(self.finished), 1)

    def test_stop_when_idle_is_noop(self):
        """Test that stop outside generation only logs."""
        orchestrator = self._ready()

        orchestrator.stop()
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.READY)
        self.assertIn("[Pipeline] not generating; nothing to stop", self.logger.lines)

    def test_reset_returns_to_idle_and_reinitializes(self):
        """Test that reset releases everything and initialize works again."""
        orchestrator = self._ready()

        orchestrator.reset()
        self.consumer.run_pending()

        self.assertIs(orchestrator.status, PipelineStatus.IDLE)
        self.assertIsNone(orchestrator.reference)
        self.assertTrue(all(stage.status is StageStatus.INIT for stage in orchestrator.stages))
        self.assertTrue(self.codec.closed)

        orchestrator.initialize()
        self.consumer.run_pending()
        self.assertIs(orchestrator.status, PipelineStatus.READY)

    def test_reset_recovers_from_error(self):
        """Test that ERROR is left only through reset."""
        self.language_model.fail_load = True
        orchestrator = self._build()
        orchestrator.initialize()
        self.consumer.run_pending()

        orchestrator.initialize()
        self.consumer.run_pending()
        self.assertIs(orchestrator.status, PipelineStatus.ERROR)

        self.language_model.fail_load = False
        orchestrator.reset()
        orchestrator.initialize()
        self.consumer.run_pending()
        self.assertIs(orchestrator.status, PipelineStatus.READY)

    def test_shutdown_closes_player_and_engines(self):
        """Test that shutdown releases the player and every engine."""
        orchestrator = self._ready()

        orchestrator.shutdown()

        self.assertTrue(self.player.closed)
        self.assertTrue(self.phoneme_model.closed)
        self.assertTrue(self.language_model.closed)
        self.assertTrue(self.codec.closed)

    def test_thread_pool_end_to_end(self):
        """Test one utterance with real worker threads and the consumer on this thread."""
        pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="clonetts-worker")
        self.addCleanup(pool.shutdown, wait=True)
        self.pool = pool
        orchestrator = self._build(chunk_size=1)

        orchestrator.initialize()
        self.assertTrue(
            self.consumer.run_until(
                lambda: orchestrator.status in (PipelineStatus.READY, PipelineStatus.ERROR), timeout=5.0
            )
        )
        self.assertIs(orchestrator.status, PipelineStatus.READY)

        orchestrator.prompt("testing")
        self.assertTrue(self.consumer.run_until(lambda: bool(self.finished), timeout=5.0))

        np.testing.assert_array_equal(np.concatenate(self.player.played), [1, 1, 1, 1, 2, 2, 2, 2])
        self.assertIs(orchestrator.status, PipelineStatus.READY)


if __name__ == "__main__":
    unittest.main()
