"""
core/errors.py -- Error taxonomy shared by auth/, personas/ and api/.

Every domain failure is raised as an ApiError subclass carrying its HTTP
status, a stable machine-readable code, a client-safe message and (for
validation failures) the full list of reasons. api/main.py converts them into
the standard {"error": {...}} envelope; nothing below the api/ layer builds
HTTP responses itself.

Messages are deliberately uniform where they guard identity: login failures
and token failures never say which check failed.

Layer rule: core/ is the kernel. No imports from api/, auth/, or personas/.
"""

from __future__ import annotations


class ApiError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(
        self,
        message: str,
        *,
        reasons: list[str] | None = None,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reasons = list(reasons or [])
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_detail(self) -> dict:
        """Return the error body used inside the response envelope."""
        detail: dict = {"code": self.code, "message": self.message}
        if self.reasons:
            detail["reasons"] = self.reasons
        return detail


class BadRequest(ApiError):
    """Malformed or missing input (400). Always user-correctable."""

    status_code = 400
    code = "bad_request"


class Unauthorized(ApiError):
    """Missing, invalid or expired credentials (401)."""

    status_code = 401
    code = "unauthorized"


class Forbidden(ApiError):
    """Authenticated but not entitled (403)."""

    status_code = 403
    code = "forbidden"


class NotFound(ApiError):
    status_code = 404
    code = "not_found"


class Conflict(ApiError):
    """Duplicate resource, e.g. an email that is already registered (409)."""

    status_code = 409
    code = "conflict"


class Locked(ApiError):
    """Account temporarily locked after repeated failed logins (423)."""

    status_code = 423
    code = "locked"


class Internal(ApiError):
    """Unexpected store or crypto failure (500). Message is always opaque."""

    status_code = 500
    code = "internal_error"


class BadGateway(ApiError):
    """An upstream the request depends on failed to answer (502)."""

    status_code = 502
    code = "bad_gateway"


class ServiceUnavailable(ApiError):
    status_code = 503
    code = "service_unavailable"
