"""Domain errors raised by services and the forum mapping layer.

Routers let these propagate; the handlers registered in ``main`` turn them
into ``{"error": message}`` JSON bodies with the matching status code.
"""


class RoomsError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationFailed(RoomsError):
    status_code = 400


class NotAuthenticated(RoomsError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class Forbidden(RoomsError):
    status_code = 403

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


class NotFound(RoomsError):
    status_code = 404


class Conflict(RoomsError):
    status_code = 409


class UpstreamError(RoomsError):
    """The Foru.ms store or the LLM provider failed or could not be reached."""

    status_code = 500

    def __init__(self, message: str = "Service unavailable"):
        super().__init__(message)
