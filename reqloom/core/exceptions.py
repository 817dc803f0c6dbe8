"""Domain exceptions for reqloom.

Every error the orchestrator raises on purpose derives from ReqloomError.
The API layer maps each subclass to one HTTP status code via
``status_code``; anything else surfaces as a 500.
"""


class ReqloomError(Exception):
    """Base class for all orchestrator errors."""

    status_code = 500

    def __init__(self, message: str = "", **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": type(self).__name__, "detail": self.message}
        if self.details:
            body["context"] = self.details
        return body


class InputError(ReqloomError):
    """Malformed, empty or oversized input. Never enqueued."""

    status_code = 400


class SignatureError(ReqloomError):
    """Missing or invalid callback signature."""

    status_code = 401


class AuthorizationError(ReqloomError):
    """Caller does not own the referenced record."""

    status_code = 403


class NotFoundError(ReqloomError):
    status_code = 404


class ConflictError(ReqloomError):
    """Attempt to mutate a terminal or finalized record in place."""

    status_code = 409


class InferenceError(ReqloomError):
    """Provider rejection or malformed structured output."""

    status_code = 502


class InferenceTimeout(InferenceError):
    status_code = 504


class QueueError(ReqloomError):
    """Delivery queue publish failed."""

    status_code = 503
