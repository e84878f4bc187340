"""Error taxonomy shared by services and the HTTP layer.

Services raise these; the API renders them as ``{"error": ..., "code": ...}``
with the class's status code.
"""


class StudioError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    default_code: str = "internal_error"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class Unauthorized(StudioError):
    """No credential, or the credential did not resolve to an active user."""

    status_code = 401
    default_code = "unauthorized"

    def __init__(self, message: str = "Unauthorized", code: str | None = None):
        super().__init__(message, code)


class PermissionDenied(StudioError):
    """Authenticated, but a gating condition is unmet.

    ``code`` is the stable reason the frontend branches on (e.g. ``requires_pro``).
    """

    status_code = 403
    default_code = "permission_denied"


class ValidationError(StudioError):
    """Malformed or insufficient input."""

    status_code = 400
    default_code = "validation_error"


class NotFound(StudioError):
    """Referenced entity is absent."""

    status_code = 404
    default_code = "not_found"


class UpstreamError(StudioError):
    """The payout processor (or another upstream) failed.

    The message is the upstream message, unmodified.
    """

    status_code = 502
    default_code = "upstream_error"
