"""Exceptions raised by the generation engine."""


class GenerationError(Exception):
    """Base class for all generation errors."""


class InvalidConfig(GenerationError, ValueError):
    """Raised when generation parameters are invalid or inconsistent.

    Always raised before the first model call.
    """


class ModelInferenceError(GenerationError, RuntimeError):
    """Raised when the model collaborator fails during a step."""


class SearchExhausted(GenerationError, RuntimeError):
    """Raised when decoding crosses its safety step ceiling without finishing."""
