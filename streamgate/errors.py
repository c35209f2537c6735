from typing import Optional


class StreamingError(Exception):
    """Base class for failures that map to an HTTP status."""

    status_code = 500

    def __init__(self, message: str, reason: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.reason = reason
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotFound(StreamingError):
    status_code = 404


class NotReady(StreamingError):
    status_code = 423


class Unauthenticated(StreamingError):
    status_code = 401


class Unauthorized(StreamingError):
    status_code = 403


class InvalidRequest(StreamingError):
    status_code = 400


class RangeNotSatisfiable(StreamingError):
    status_code = 416

    def __init__(self, total_size: int):
        self.total_size = total_size
        super().__init__(f"Range not satisfiable for a {total_size} byte file")


class UpstreamTimeout(StreamingError):
    status_code = 504


class TransportAbort(StreamingError):
    """Raised while a response body is already on the wire; cannot become an error response."""

    status_code = 502
