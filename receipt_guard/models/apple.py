"""
Apple App Store domain models - Immutable dataclasses for receipt verification.

Apple's legacy verifyReceipt endpoint returns a status code plus the decoded
receipt. Status codes are documented at:
https://developer.apple.com/documentation/appstorereceipts/status
"""

from dataclasses import dataclass
from enum import IntEnum


class AppleReceiptStatus(IntEnum):
    """verifyReceipt status codes."""

    VALID = 0
    UNREADABLE_JSON = 21000
    MALFORMED_RECEIPT = 21002
    NOT_AUTHENTICATED = 21003
    SHARED_SECRET_MISMATCH = 21004
    SERVER_UNAVAILABLE = 21005
    SUBSCRIPTION_EXPIRED = 21006
    SANDBOX_RECEIPT = 21007  # Receipt is from the test environment
    PRODUCTION_RECEIPT = 21008  # Receipt is from the production environment
    INTERNAL_DATA_ACCESS_ERROR = 21009
    ACCOUNT_NOT_FOUND = 21010


STATUS_MESSAGES: dict[int, str] = {
    AppleReceiptStatus.VALID: "Valid receipt",
    AppleReceiptStatus.UNREADABLE_JSON: "The App Store could not read the JSON object you provided.",
    AppleReceiptStatus.MALFORMED_RECEIPT: (
        "The data in the receipt-data property was malformed or missing."
    ),
    AppleReceiptStatus.NOT_AUTHENTICATED: "The receipt could not be authenticated.",
    AppleReceiptStatus.SHARED_SECRET_MISMATCH: (
        "The shared secret you provided does not match the shared secret on file."
    ),
    AppleReceiptStatus.SERVER_UNAVAILABLE: "The receipt server is not currently available.",
    AppleReceiptStatus.SUBSCRIPTION_EXPIRED: (
        "This receipt is valid but the subscription has expired."
    ),
    AppleReceiptStatus.SANDBOX_RECEIPT: "This receipt is from the test environment (sandbox).",
    AppleReceiptStatus.PRODUCTION_RECEIPT: "This receipt is from the production environment.",
    AppleReceiptStatus.INTERNAL_DATA_ACCESS_ERROR: "Internal data access error.",
    AppleReceiptStatus.ACCOUNT_NOT_FOUND: "The user account cannot be found or has been deleted.",
}


def status_message(status: int) -> str:
    """Human-readable message for a verifyReceipt status code."""
    return STATUS_MESSAGES.get(status, f"Unknown status code: {status}")


@dataclass(frozen=True)
class AppleReceiptConfig:
    """Configuration for Apple's verifyReceipt API."""

    shared_secret: str  # App-Specific Shared Secret
    production_url: str = "https://buy.itunes.apple.com/verifyReceipt"
    sandbox_url: str = "https://sandbox.itunes.apple.com/verifyReceipt"
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        """Validate endpoint configuration."""
        if not self.production_url.startswith("https://"):
            raise ValueError("production_url must be an https URL")
        if not self.sandbox_url.startswith("https://"):
            raise ValueError("sandbox_url must be an https URL")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    def __repr__(self) -> str:
        """Never render the shared secret."""
        return (
            f"AppleReceiptConfig(production_url={self.production_url!r}, "
            f"sandbox_url={self.sandbox_url!r}, timeout_seconds={self.timeout_seconds})"
        )


def _parse_ms(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(str(value))


@dataclass(frozen=True)
class AppleInAppPurchase:
    """One entry of receipt.in_app or latest_receipt_info."""

    product_id: str
    transaction_id: str
    original_transaction_id: str
    purchase_date_ms: int
    expires_date_ms: int | None = None

    @classmethod
    def from_payload(cls, data: dict[str, object]) -> "AppleInAppPurchase":
        """Parse an in-app entry. Apple sends millisecond timestamps as strings."""
        return cls(
            product_id=str(data.get("product_id", "")),
            transaction_id=str(data.get("transaction_id") or ""),
            original_transaction_id=str(data.get("original_transaction_id") or ""),
            purchase_date_ms=_parse_ms(data.get("purchase_date_ms")) or 0,
            expires_date_ms=_parse_ms(data.get("expires_date_ms")),
        )

    @property
    def effective_transaction_id(self) -> str:
        """Transaction ID, falling back to the original transaction ID."""
        return self.transaction_id or self.original_transaction_id
