"""
Errors raised by the session core. Each maps to one HTTP status in main.py.
"""


class SessionError(Exception):
    kind = "session_error"
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(SessionError):
    """Missing or invalid input, e.g. an empty task title."""

    kind = "validation_error"
    status_code = 422


class NotFoundError(SessionError):
    """Session does not exist or belongs to someone else."""

    kind = "not_found"
    status_code = 404


class InvalidStateError(SessionError):
    """Transition not legal from the session's current status."""

    kind = "invalid_state"
    status_code = 409


class CollaboratorError(SessionError):
    """The database (or another backing service) failed."""

    kind = "collaborator_error"
    status_code = 503
