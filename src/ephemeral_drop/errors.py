"""Error taxonomy shared by the server, the store and the client.

Every error carries an HTTP status and a machine-readable ``code`` so that
clients can tell "retry later" (429) from "gone forever" (404) from
"fix your input" (400).
"""

from __future__ import annotations


class DropError(Exception):
    """Base class for all ephemeral-drop errors."""

    status_code: int = 500
    code: str = "error"
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class ValidationError(DropError):
    """Bad user input (size, TTL, filename). Raised before any side effect."""

    status_code = 400
    code = "invalid_input"
    default_message = "Invalid input"


class PayloadTooLarge(ValidationError):
    status_code = 413
    code = "too_large"
    default_message = "File too large"


class NotFound(DropError):
    """Absent, expired, already consumed or deleted; never distinguished."""

    status_code = 404
    code = "not_found"
    default_message = "File not found or expired"


class RateLimited(DropError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests"


class AuthorizationError(DropError):
    """Delete token rejected. Unknown ids fail the same way as wrong tokens."""

    status_code = 403
    code = "invalid_token"
    default_message = "Invalid token or file not found"


class MissingToken(AuthorizationError):
    status_code = 401
    code = "missing_token"
    default_message = "Missing token"


class StorageFault(DropError):
    """Underlying database or filesystem failure."""

    status_code = 500
    code = "storage_fault"
    default_message = "Storage failure"


class DuplicateId(StorageFault):
    """An id collided on insert. Fatal for the request; never retried with the same id."""

    code = "duplicate_id"
    default_message = "Object id already exists"


class EnvelopeError(ValidationError):
    """The plaintext envelope could not be built or parsed."""

    code = "invalid_envelope"
    default_message = "Malformed envelope"


class DecryptionError(DropError):
    """AEAD tag verification failed. No plaintext is ever returned."""

    status_code = 400
    code = "decryption_failed"
    default_message = "Wrong key or corrupted data"


ERRORS_BY_CODE: dict[str, type[DropError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        PayloadTooLarge,
        NotFound,
        RateLimited,
        AuthorizationError,
        MissingToken,
        StorageFault,
        DuplicateId,
        EnvelopeError,
        DecryptionError,
    )
}


def error_for(code: str | None, message: str | None = None) -> DropError:
    """Rebuild an error from a server ``{"error", "code"}`` payload."""
    cls = ERRORS_BY_CODE.get(code or "", DropError)
    return cls(message)
