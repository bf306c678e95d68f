"""
Domain errors raised by the store and dispatcher layers.

Routers let these propagate; server.py turns them into a uniform
{"error": code, "detail": message} response.
"""


class AppError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(AppError):
    """Referenced order / conversation / message / notification does not exist"""
    status_code = 404
    code = "not_found"


class ValidationError(AppError):
    """Input rejected before any write"""
    status_code = 400
    code = "validation_error"


class ConflictError(AppError):
    """Optimistic write kept losing to concurrent writers"""
    status_code = 409
    code = "conflict"


class RemoteError(AppError):
    """Database or push-service call failed; detail is the client library's message"""
    status_code = 502
    code = "remote_error"
