"""Domain-specific exceptions for the voice query pipeline.

These exceptions are safe to import from API layers without triggering provider SDK imports.
"""

from __future__ import annotations


class VoiceRagError(Exception):
    status_code: int = 500
    default_detail: str = "Voice query processing failed."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class InputError(VoiceRagError):
    status_code = 400
    default_detail = "Invalid audio or text input."


class ConversionError(VoiceRagError):
    status_code = 422
    default_detail = "Audio conversion failed."


class TranscriptionError(VoiceRagError):
    status_code = 503
    default_detail = "Speech recognition failed."


class ProviderAuthError(VoiceRagError):
    status_code = 401
    default_detail = "Authentication failed. Please check your API keys."


class ProviderRateLimited(VoiceRagError):
    status_code = 429
    default_detail = "Rate limit exceeded. Please try again in a moment."


class ProviderTimeout(VoiceRagError):
    status_code = 504
    default_detail = "Request timeout. The service is taking too long to respond."


class GenerationTimeout(ProviderTimeout):
    default_detail = "Answer generation timed out."


class GenerationError(VoiceRagError):
    status_code = 503
    default_detail = "Answer generation failed."


class SynthesisError(VoiceRagError):
    status_code = 500
    default_detail = "Speech synthesis failed."
