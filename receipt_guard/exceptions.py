"""
Exception Classes - Strongly typed exception hierarchy.

Each class carries the wire error code the HTTP layer reports to callers.
Ordinary store rejections (expired, cancelled, pending, unknown product) are
NOT exceptions: they are ValidationOutcome(valid=False).
"""


class ReceiptGuardError(Exception):
    """Base exception for all receipt validation errors."""

    code = "internal"
    status_code = 500


class InvalidArgumentError(ReceiptGuardError):
    """Raised when a request is missing fields or has malformed values."""

    code = "invalid-argument"
    status_code = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthenticationError(ReceiptGuardError):
    """Raised when the caller identity cannot be established."""

    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class ReplayDetectedError(ReceiptGuardError):
    """Raised when a receipt was already redeemed by a different user."""

    code = "permission-denied"
    status_code = 403

    def __init__(self, receipt_key: str, owner_user_id: str, requesting_user_id: str) -> None:
        self.receipt_key = receipt_key
        self.owner_user_id = owner_user_id
        self.requesting_user_id = requesting_user_id
        super().__init__("This receipt has already been used by another user")


class NotConfiguredError(ReceiptGuardError):
    """Raised when store credentials or secrets are missing."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Not configured: {message}")


class UpstreamUnavailableError(ReceiptGuardError):
    """Raised when a store API cannot be reached or answers with a server error."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class PurchaseNotFoundError(ReceiptGuardError):
    """Raised when the store has no record of a purchase or subscription."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InternalError(ReceiptGuardError):
    """Raised when validation fails for an unexpected reason."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
