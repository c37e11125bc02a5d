"""
Failure kinds surfaced by the callable endpoint. Each carries the wire status
string and the HTTP code it is rendered with.
"""


class CallableError(Exception):
    status = "INTERNAL"
    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": {"status": self.status, "message": self.message}}


class Unauthenticated(CallableError):
    status = "UNAUTHENTICATED"
    http_status = 401


class InvalidArgument(CallableError):
    status = "INVALID_ARGUMENT"
    http_status = 400


class NotFound(CallableError):
    status = "NOT_FOUND"
    http_status = 404


class PermissionDenied(CallableError):
    status = "PERMISSION_DENIED"
    http_status = 403


class FailedPrecondition(CallableError):
    status = "FAILED_PRECONDITION"
    http_status = 400


class Internal(CallableError):
    status = "INTERNAL"
    http_status = 500


class StatusRequestRejected(Exception):
    """Business-rule rejection of a queued status request. Recorded on the request, never re-raised."""
