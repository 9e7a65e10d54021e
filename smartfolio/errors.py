"""Error taxonomy shared by the services and mapped to HTTP statuses in main."""

from typing import Optional


class SmartFolioError(Exception):
    """Base class for errors that terminate a request with a known status."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AuthenticationRequired(SmartFolioError):
    status_code = 401
    default_detail = "Unauthorized"


class NotOwner(SmartFolioError):
    status_code = 403
    default_detail = "Only the portfolio owner can do this"


class NotFound(SmartFolioError):
    status_code = 404
    default_detail = "Not found"


class InvalidShare(SmartFolioError):
    """A share token that is unknown, revoked or expired.

    All three look the same to the caller. ``reason`` is for server logs only.
    """

    status_code = 404
    default_detail = "Invalid or expired share link"

    UNKNOWN = "unknown"
    REVOKED = "revoked"
    EXPIRED = "expired"
    MISMATCH = "mismatch"

    def __init__(self, reason: str = UNKNOWN):
        self.reason = reason
        super().__init__()


class ValidationFailed(SmartFolioError):
    status_code = 400
    default_detail = "Invalid input"


class UpstreamUnavailable(SmartFolioError):
    """A price or narrative provider failed or timed out."""

    status_code = 502
    default_detail = "Upstream service unavailable"


class MalformedNarrative(UpstreamUnavailable):
    """The narrative provider answered, but not with anything usable."""

    default_detail = "Narrative service returned malformed output"
