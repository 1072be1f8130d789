"""Unit tests for the path resolver, buffering player and llama.cpp backbone."""
from __future__ import annotations

import unittest
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np

from clonetts.application.errors import FatalEngineError
from clonetts.domain.vo.generation import GeneratedToken, GenerationParams
from clonetts.infrastructure.audio.buffer_player import BufferingPlayer
from clonetts.infrastructure.local.language_model import LlamaCppLanguageModel
from clonetts.infrastructure.local.path_resolver import MountPathResolver


class TestMountPathResolver(unittest.TestCase):
    """Test cases for MountPathResolver."""

    def test_relative_paths_join_base(self):
        """Test that relative paths resolve under the base directory."""
        resolver = MountPathResolver("/srv/models")
        self.assertEqual(resolver.resolve("decoder.onnx"), Path("/srv/models/decoder.onnx"))

    def test_absolute_paths_unchanged(self):
        """Test that absolute paths are returned as-is."""
        resolver = MountPathResolver("/srv/models")
        self.assertEqual(resolver.resolve("/data/ref.json"), Path("/data/ref.json"))

    def test_default_base_is_cwd(self):
        """Test that the working directory is the default base."""
        self.assertEqual(MountPathResolver().resolve("x.txt"), Path.cwd() / "x.txt")


class TestBufferingPlayer(unittest.TestCase):
    """Test cases for BufferingPlayer."""

    def test_collects_frames(self):
        """Test that played frames are kept in order and never block."""
        player = BufferingPlayer()
        player.play(np.array([0.1, 0.2]))
        player.play(np.array([[0.3]]))

        self.assertFalse(player.is_playing)
        np.testing.assert_allclose(player.waveform(), [0.1, 0.2, 0.3])
        self.assertEqual(len(player.frames), 2)

        player.clear()
        self.assertEqual(player.waveform().size, 0)

        player.close()
        self.assertTrue(player.closed)


class TestLlamaCppLanguageModel(unittest.TestCase):
    """Test cases for LlamaCppLanguageModel with an injected model."""

    def setUp(self):
        """Set up test fixtures."""
        self.llama = MagicMock()
        self.llama.token_eos.return_value = 0
        self.llama.tokenize.return_value = [11, 12]
        self.llama.generate.return_value = (token for token in [5, 6, 0, 7])
        self.llama.detokenize.side_effect = lambda tokens, special: f"<|speech_{tokens[0]}|>".encode()

        self.model = LlamaCppLanguageModel(model_path="backbone.gguf", path_resolver=MountPathResolver("/models"))
        self.model._model = self.llama

    def test_stream_yields_pieces_until_eos(self):
        """Test detokenized pieces and the end marker on EOS."""
        params = GenerationParams(temperature=0.5, top_k=30)

        tokens = list(self.model.stream("prompt", params))

        self.assertEqual(
            tokens,
            [GeneratedToken("<|speech_5|>"), GeneratedToken("<|speech_6|>"), GeneratedToken("", is_end=True)],
        )
        self.llama.tokenize.assert_called_once_with(b"prompt", add_bos=True, special=True)
        kwargs = self.llama.generate.call_args.kwargs
        self.assertEqual(kwargs["temp"], 0.5)
        self.assertEqual(kwargs["top_k"], 30)

    def test_character_split_across_tokens_is_kept(self):
        """Test that a UTF-8 character spread over two tokens is emitted once, whole."""
        pieces = {5: b"\xc3", 6: b"\xa9"}
        self.llama.detokenize.side_effect = lambda tokens, special: pieces[tokens[0]]

        tokens = list(self.model.stream("prompt", GenerationParams()))

        self.assertEqual(tokens, [GeneratedToken("é"), GeneratedToken("", is_end=True)])

    def test_stream_without_model_is_fatal(self):
        """Test that a released model cannot serve requests."""
        self.model.close()

        with self.assertRaises(FatalEngineError):
            self.model.stream("prompt", GenerationParams())
        self.llama.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
