"""Gateway error taxonomy.

Every error carries the HTTP status the control plane answers with; the
app factory turns them into `{"success": false, "message": ...}` bodies.
"""


class GatewayError(Exception):
    """Base class for errors surfaced by the gateway."""

    status_code = 500


class ValidationError(GatewayError):
    """Missing or malformed uid or required field."""

    status_code = 400


class AuthError(GatewayError):
    """Invalid credential/token or unauthenticated uid."""

    status_code = 401


class NotFoundError(GatewayError):
    """uid has no session."""

    status_code = 404


class TransientInitError(GatewayError):
    """A single attempt to start the automation client failed."""

    status_code = 503


class SessionInitError(GatewayError):
    """Session creation failed for good (no QR will be delivered)."""

    status_code = 503


class MediaError(GatewayError):
    """Media could not be relayed; aborts the current message only."""

    status_code = 502


class MediaDownloadError(MediaError):
    pass


class UploadError(MediaError):
    pass


class TranscodeError(MediaError):
    pass


class TeardownError(GatewayError):
    """A teardown step failed. Collected, never aborts the teardown."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step} failed: {type(cause).__name__}")
        self.step = step
        self.cause = cause
