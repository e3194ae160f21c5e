from __future__ import annotations

"""Error taxonomy shared by the retrieval and embedding layers."""


class RecallError(RuntimeError):
    """Base class for retrieval subsystem errors."""
    pass


class ValidationError(RecallError):
    """Raised when input is missing, empty, or not text."""
    pass


class DimensionMismatchError(ValidationError):
    """Raised when two vectors have different lengths."""
    pass


class ProviderError(RecallError):
    """Raised when an embedding, vector, or content backend fails."""
    pass


class ConfigurationError(RecallError):
    """Raised when credentials or connection targets are missing."""
    pass
