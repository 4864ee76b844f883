"""Model-layer error taxonomy.

Callers walk a fallback chain on these; anything else escaping the model
layer is a programming error.
"""


class ModelError(RuntimeError):
    """Base class for failures talking to a language model service."""

    def __init__(self, message: str, *, model: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.model = model
        self.status_code = status_code


class ModelRateLimitError(ModelError):
    """HTTP 429 / quota exhausted. Means "try the next tier", never "retry here"."""


class ModelUnavailableError(ModelError):
    """Transport failure, timeout, missing credentials or non-429 HTTP error."""


class ModelResponseError(ModelError, ValueError):
    """The model answered but the body held no parseable JSON object."""
