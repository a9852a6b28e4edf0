"""Error taxonomy shared by every service.

Each error carries a stable ``code`` so callers (the CLI, an HTTP layer)
can map failures without matching on message text.
"""


class GoalBingoError(Exception):
    """Base class for all domain errors."""

    code = "error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or (self.__class__.__doc__ or self.code).splitlines()[0])
        self.message = str(self.args[0])


class Unauthenticated(GoalBingoError):
    """No caller identity was supplied."""

    code = "unauthenticated"


class NotFound(GoalBingoError):
    """Entity is missing or not owned by the caller.

    Missing and not-owned are deliberately indistinguishable.
    """

    code = "not_found"


class PreconditionFailed(GoalBingoError):
    """The entity is not in a state that allows the operation."""

    code = "precondition_failed"


class ValidationFailed(GoalBingoError):
    """Input was empty, too long or malformed."""

    code = "validation_failed"


class ExternalServiceUnavailable(GoalBingoError):
    """The AI inference service could not produce a result."""

    code = "external_service_unavailable"


class TransientInferenceError(ExternalServiceUnavailable):
    """Retryable network/HTTP layer failure talking to the inference API.

    Raised for:
    - Network timeouts
    - Connection errors
    - HTTP 429 (rate limit)
    - HTTP 5xx (server errors)
    """

    code = "inference_transient"


__all__ = [
    "GoalBingoError",
    "Unauthenticated",
    "NotFound",
    "PreconditionFailed",
    "ValidationFailed",
    "ExternalServiceUnavailable",
    "TransientInferenceError",
]
