"""Exception taxonomy, each mapped to one HTTP status by the router."""


class HealthNodeError(Exception):
    """Base class for errors answered with a JSON error body."""

    status = 500
    message = "internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class BadRequest(HealthNodeError):
    status = 400
    message = "bad request"


class NotFound(HealthNodeError):
    status = 404
    message = "not found"


class ToolUnavailable(HealthNodeError):
    """A required external binary (systemctl, journalctl) is not installed."""

    status = 501
    message = "required tool is not available"


class UpstreamError(HealthNodeError):
    status = 502
    message = "monitor request failed"


class CacheBusy(HealthNodeError):
    """The per-service lock could not be acquired within the wait bound.

    Retryable: the caller may repeat the request once the holder finishes.
    """

    status = 503
    message = "error cache busy, retry later"
