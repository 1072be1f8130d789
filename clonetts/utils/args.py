from __future__ import annotations

import argparse


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Voice-cloned text-to-speech")
    parser.add_argument(
        "text",
        nargs="?",
        help="Text to speak. If omitted, read from stdin (ignored with --gui).",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env). Use empty to disable.",
    )
    parser.add_argument(
        "--gui",
        action="store_true",
        help="Open the desktop window instead of speaking once.",
    )
    parser.add_argument(
        "--no-playback",
        action="store_true",
        help="Keep decoded audio in memory instead of playing it.",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Override CLONETTS_STREAM_CHUNK_SIZE (tokens per decode window).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=300.0,
        help="Seconds to wait for initialization and for the utterance (default: 300).",
    )
    return parser.parse_args(argv)
