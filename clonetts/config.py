from __future__ import annotations

import os
from dataclasses import dataclass, field

from clonetts.application.text_segmenter import DEFAULT_LANGUAGE
from clonetts.domain.vo.audio import HOP_LENGTH
from clonetts.domain.vo.generation import GenerationParams

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_OPENAI_BASE_URL = "http://localhost:8080/v1"
# llama-server ignores the key, but the SDK refuses to start without one.
PLACEHOLDER_API_KEY = "sk-no-key-required"
BACKBONE_PROVIDERS = ("openai", "local")


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str = PLACEHOLDER_API_KEY
    base_url: str = DEFAULT_OPENAI_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class PhonemizerConfig:
    model_path: str | None = None
    config_path: str | None = None
    dictionary_path: str | None = None
    language: str = DEFAULT_LANGUAGE


@dataclass(frozen=True)
class BackboneConfig:
    provider: str = "openai"
    model: str | None = None
    context_length: int = 2048


@dataclass(frozen=True)
class ReferenceConfig:
    audio_tokens_path: str | None = None
    transcript_path: str | None = None


@dataclass(frozen=True)
class StreamingConfig:
    chunk_size: int = 480
    overlap: int = 0
    hop_length: int = HOP_LENGTH


@dataclass(frozen=True)
class AppConfig:
    base_dir: str | None = None
    phonemizer: PhonemizerConfig = field(default_factory=PhonemizerConfig)
    decoder_model_path: str | None = None
    backbone: BackboneConfig = field(default_factory=BackboneConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    reference: ReferenceConfig = field(default_factory=ReferenceConfig)
    generation: GenerationParams = field(default_factory=GenerationParams)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)

    @staticmethod
    def from_env() -> "AppConfig":
        provider = (os.getenv("CLONETTS_BACKBONE") or "openai").strip().lower()
        if provider not in BACKBONE_PROVIDERS:
            raise ValueError(
                f"CLONETTS_BACKBONE must be one of {', '.join(BACKBONE_PROVIDERS)}. Got {provider!r}."
            )

        streaming = StreamingConfig(
            chunk_size=_int_env("CLONETTS_STREAM_CHUNK_SIZE", 480, minimum=1),
            overlap=_int_env("CLONETTS_STREAM_OVERLAP", 0, minimum=0),
            hop_length=_int_env("CLONETTS_HOP_LENGTH", HOP_LENGTH, minimum=1),
        )

        generation = GenerationParams(
            temperature=_float_env("CLONETTS_TEMPERATURE", 1.0),
            top_k=_int_env("CLONETTS_TOP_K", 50, minimum=0),
            top_p=_float_env("CLONETTS_TOP_P", 1.0),
            min_p=_float_env("CLONETTS_MIN_P", 0.0),
            repeat_penalty=_float_env("CLONETTS_REPEAT_PENALTY", 1.0),
            max_tokens=_int_env("CLONETTS_MAX_TOKENS", 2048, minimum=1),
        )

        return AppConfig(
            base_dir=_str_env("CLONETTS_BASE_DIR"),
            phonemizer=PhonemizerConfig(
                model_path=_str_env("CLONETTS_PHONEMIZER_MODEL"),
                config_path=_str_env("CLONETTS_PHONEMIZER_CONFIG"),
                dictionary_path=_str_env("CLONETTS_PHONEMIZER_DICT"),
                language=_str_env("CLONETTS_LANGUAGE") or DEFAULT_LANGUAGE,
            ),
            decoder_model_path=_str_env("CLONETTS_DECODER_MODEL"),
            backbone=BackboneConfig(
                provider=provider,
                model=_str_env("CLONETTS_BACKBONE_MODEL"),
                context_length=_int_env("CLONETTS_BACKBONE_CONTEXT", 2048, minimum=1),
            ),
            openai=OpenAIConfig(
                api_key=_str_env("OPENAI_API_KEY") or PLACEHOLDER_API_KEY,
                base_url=_str_env("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL,
                timeout_seconds=_float_env("OPENAI_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            ),
            reference=ReferenceConfig(
                audio_tokens_path=_str_env("CLONETTS_REF_AUDIO_TOKENS"),
                transcript_path=_str_env("CLONETTS_REF_TRANSCRIPT"),
            ),
            generation=generation,
            streaming=streaming,
        )


def _str_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip() or None


def _int_env(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = _str_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer. Got {raw!r}.") from e
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}. Got {value}.")
    return value


def _float_env(name: str, default: float) -> float:
    raw = _str_env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number. Got {raw!r}.") from e
