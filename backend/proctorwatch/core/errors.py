class ProctoringError(Exception):
    """Base class for failures raised by the proctoring core."""

    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(ProctoringError):
    status_code = 400


class NotFoundError(ProctoringError):
    status_code = 404


class InvalidTransitionError(ProctoringError):
    status_code = 409


class SessionClosedError(InvalidTransitionError):
    """An event was offered to a session that already reached a terminal state."""
