from __future__ import annotations


class ExternalServiceError(RuntimeError):
    """Raised when an inference engine fails (engine-agnostic)."""


class PhonemizerError(ExternalServiceError):
    """Raised when phoneme inference or phonemizer loading fails."""


class TokenGenerationError(ExternalServiceError):
    """Raised when the language model fails to load or generate."""


class AudioDecodeError(ExternalServiceError):
    """Raised when the codec decoder fails to load or decode."""


class ReferenceVoiceError(ExternalServiceError):
    """Raised when the reference audio tokens or transcript cannot be read."""


class OperationCancelledError(RuntimeError):
    """Raised inside background work that observed its cancellation token."""


class FatalEngineError(ExternalServiceError):
    """Raised when an engine can no longer serve requests (e.g. its session is gone).

    Unlike other engine errors this is not absorbed per request: the owning
    stage moves to ERROR.
    """
