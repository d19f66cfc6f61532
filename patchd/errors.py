"""Error taxonomy shared by the gateway and every service built on it.

Callers branch on ``error.kind`` (or the subclass), never on message text.
"""
import enum


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    UNAUTHORIZED = "unauthorized"
    TRANSPORT = "transport"
    INVALID = "invalid"


class PatchdError(Exception):
    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class NotFoundError(PatchdError):
    """Zero rows where exactly one was expected."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(PatchdError):
    """Unique-constraint shaped violation (duplicate membership, friendship, invite)."""

    kind = ErrorKind.CONFLICT


class ExpiredError(PatchdError):
    kind = ErrorKind.EXPIRED


class UnauthorizedError(PatchdError):
    """Actor does not match the required ownership, or no signed-in session."""

    kind = ErrorKind.UNAUTHORIZED


class TransportError(PatchdError):
    kind = ErrorKind.TRANSPORT


class ValidationError(PatchdError):
    kind = ErrorKind.INVALID


class NothingToPasteError(ValidationError):
    def __init__(self, message: str = ""):
        super().__init__(
            message or "No image found in clipboard. Try copying an image or cutout first."
        )
