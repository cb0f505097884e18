# goalcoach/errors.py


class InputError(ValueError):
    """
    The caller omitted (or malformed) a required field.
    Surfaced immediately; the operation is aborted with no fallback.
    """

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        self.message = message or f"{field} is required"
        super().__init__(self.message)


class GatewayError(Exception):
    pass


class TransportError(GatewayError):
    """Network failure, timeout or non-2xx status from the completion service."""

    def __init__(self, message: str, status_code: int | None = None, timeout: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timeout = timeout


class ShapeError(GatewayError):
    """The completion service answered without choices[0].message.content."""


class InvalidTransition(Exception):
    """Event not valid for the current stage. Recovered as a no-op."""


class UnknownEventError(TypeError):
    """Programmer error: the state machine was handed something that is not an event."""
