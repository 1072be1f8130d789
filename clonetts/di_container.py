from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from openai import OpenAI

from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.decoder_stage import DecoderStage
from clonetts.application.phonemizer_stage import PhonemizerStage
from clonetts.application.pipeline_orchestrator import PipelineOrchestrator
from clonetts.application.port.audio_player import AudioPlayer
from clonetts.application.port.codec_decoder import CodecDecoder
from clonetts.application.port.language_model import LanguageModel
from clonetts.application.port.path_resolver import PathResolver
from clonetts.application.port.phoneme_model import PhonemeModel
from clonetts.application.token_generator_stage import TokenGeneratorStage
from clonetts.config import AppConfig
from clonetts.infrastructure.local.path_resolver import MountPathResolver
from clonetts.infrastructure.onnx.codec_decoder import OnnxCodecDecoder
from clonetts.infrastructure.onnx.phoneme_model import OnnxPhonemeModel
from clonetts.infrastructure.openai.language_model import OpenAICompletionModel
from clonetts.utils.logger import Logger

DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class AppContainer:
    config: AppConfig
    logger: Logger
    consumer: ConsumerExecutor
    pool: ThreadPoolExecutor
    player: AudioPlayer
    phonemizer: PhonemizerStage
    generator: TokenGeneratorStage
    decoder: DecoderStage
    orchestrator: PipelineOrchestrator

    def close(self) -> None:
        self.orchestrator.shutdown()
        self.pool.shutdown(wait=False, cancel_futures=True)


def build_container(
    config: AppConfig,
    *,
    logger: Logger | None = None,
    consumer: ConsumerExecutor | None = None,
    pool: ThreadPoolExecutor | None = None,
    path_resolver: PathResolver | None = None,
    player: AudioPlayer | None = None,
    phoneme_model: PhonemeModel | None = None,
    language_model: LanguageModel | None = None,
    codec_decoder: CodecDecoder | None = None,
) -> AppContainer:
    logger = logger or Logger()
    consumer = consumer or ConsumerExecutor(logger=logger)
    pool = pool or ThreadPoolExecutor(max_workers=DEFAULT_WORKERS, thread_name_prefix="clonetts-worker")
    path_resolver = path_resolver or MountPathResolver(config.base_dir)

    if player is None:
        from clonetts.infrastructure.audio.speaker import Speaker

        player = Speaker(logger=logger)

    phoneme_model = phoneme_model or OnnxPhonemeModel(
        model_path=config.phonemizer.model_path,
        config_path=config.phonemizer.config_path,
        path_resolver=path_resolver,
        logger=logger,
    )

    codec_decoder = codec_decoder or OnnxCodecDecoder(
        model_path=config.decoder_model_path,
        path_resolver=path_resolver,
        logger=logger,
    )

    if language_model is None:
        if config.backbone.provider == "local":
            from clonetts.infrastructure.local.language_model import LlamaCppLanguageModel

            language_model = LlamaCppLanguageModel(
                model_path=config.backbone.model,
                path_resolver=path_resolver,
                n_ctx=config.backbone.context_length,
                logger=logger,
            )
        else:
            openai_client = OpenAI(
                api_key=config.openai.api_key,
                base_url=config.openai.base_url,
                timeout=config.openai.timeout_seconds,
            )
            language_model = OpenAICompletionModel(
                client=openai_client,
                model=config.backbone.model,
                logger=logger,
            )

    phonemizer = PhonemizerStage(
        engine=phoneme_model,
        consumer=consumer,
        pool=pool,
        dictionary_path=(
            str(path_resolver.resolve(config.phonemizer.dictionary_path))
            if config.phonemizer.dictionary_path
            else None
        ),
        language=config.phonemizer.language,
        logger=logger,
    )
    generator = TokenGeneratorStage(
        engine=language_model,
        consumer=consumer,
        pool=pool,
        params=config.generation,
        logger=logger,
    )
    decoder = DecoderStage(
        engine=codec_decoder,
        consumer=consumer,
        pool=pool,
        logger=logger,
    )

    orchestrator = PipelineOrchestrator(
        phonemizer=phonemizer,
        generator=generator,
        decoder=decoder,
        player=player,
        consumer=consumer,
        pool=pool,
        path_resolver=path_resolver,
        reference_audio_tokens_path=config.reference.audio_tokens_path,
        reference_transcript_path=config.reference.transcript_path,
        chunk_size=config.streaming.chunk_size,
        overlap=config.streaming.overlap,
        hop_length=config.streaming.hop_length,
        logger=logger,
    )

    return AppContainer(
        config=config,
        logger=logger,
        consumer=consumer,
        pool=pool,
        player=player,
        phonemizer=phonemizer,
        generator=generator,
        decoder=decoder,
        orchestrator=orchestrator,
    )
