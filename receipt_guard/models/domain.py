"""
Domain Models - Internal business logic models using dataclasses.

All data structures are strongly typed immutable dataclasses.
Timestamps are epoch milliseconds, matching what both stores report.
"""

import hashlib
import time
from dataclasses import dataclass, replace
from enum import Enum

from receipt_guard.exceptions import InvalidArgumentError


def epoch_ms_now() -> int:
    """Get current time in epoch milliseconds."""
    return int(time.time() * 1000)


def receipt_digest(payload: str) -> str:
    """SHA-256 hex digest of a receipt payload."""
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def receipt_fingerprint(payload: str) -> str:
    """Short, non-reversible identifier for a receipt payload (safe to log)."""
    return receipt_digest(payload)[:16]


class Platform(str, Enum):
    """Issuing store."""

    IOS = "ios"
    ANDROID = "android"


class ProductType(str, Enum):
    """Google Play resource a token belongs to."""

    PRODUCT = "product"
    SUBSCRIPTION = "subscription"


EXPIRED_MESSAGE = "Subscription has expired"
TRANSACTION_MISMATCH_MESSAGE = "Transaction ID does not match receipt"


@dataclass(frozen=True)
class ValidationRequest:
    """Immutable validation request - identity comes from the auth context."""

    platform: Platform
    receipt_payload: str
    product_id: str
    transaction_id: str | None = None
    product_type: ProductType = ProductType.PRODUCT

    def __post_init__(self) -> None:
        """Validate request fields."""
        if not self.receipt_payload or not self.receipt_payload.strip():
            raise InvalidArgumentError("receiptData is required")
        if not self.product_id or not self.product_id.strip():
            raise InvalidArgumentError("productId is required")
        if self.transaction_id is not None and not self.transaction_id.strip():
            raise InvalidArgumentError("transactionId cannot be blank")
        if self.transaction_id is not None and self.platform != Platform.IOS:
            raise InvalidArgumentError("transactionId is only accepted for ios")

    @property
    def receipt_key(self) -> str:
        """Replay guard key: transaction ID if supplied, else the receipt digest."""
        return self.transaction_id or receipt_digest(self.receipt_payload)


@dataclass(frozen=True)
class ValidationOutcome:
    """Normalized result of a store validation."""

    valid: bool
    product_id: str
    transaction_id: str
    purchase_date_ms: int
    expiration_date_ms: int | None = None
    error: str | None = None
    cached: bool = False

    def __post_init__(self) -> None:
        """error is set iff the outcome is invalid."""
        if self.valid and self.error is not None:
            raise ValueError("Valid outcome cannot carry an error")
        if not self.valid and not self.error:
            raise ValueError("Invalid outcome requires an error message")

    @classmethod
    def rejected(cls, error: str) -> "ValidationOutcome":
        """Invalid outcome with empty identifiers."""
        return cls(valid=False, product_id="", transaction_id="", purchase_date_ms=0, error=error)

    def is_expired(self, now_ms: int | None = None) -> bool:
        """Check if the expiration timestamp is strictly in the past."""
        if self.expiration_date_ms is None:
            return False
        return self.expiration_date_ms < (now_ms if now_ms is not None else epoch_ms_now())

    def as_expired(self) -> "ValidationOutcome":
        """Same identifiers and dates, marked invalid because of expiry."""
        return replace(self, valid=False, error=EXPIRED_MESSAGE)


@dataclass(frozen=True)
class ReceiptRecord:
    """A redeemed receipt, persisted under its receipt key."""

    user_id: str
    platform: Platform
    product_id: str
    transaction_id: str
    purchase_date_ms: int
    validated_at_ms: int
    expiration_date_ms: int | None = None

    def to_outcome(self, now_ms: int | None = None) -> ValidationOutcome:
        """Rebuild the outcome served for a cached hit."""
        outcome = ValidationOutcome(
            valid=True,
            product_id=self.product_id,
            transaction_id=self.transaction_id,
            purchase_date_ms=self.purchase_date_ms,
            expiration_date_ms=self.expiration_date_ms,
            cached=True,
        )
        if outcome.is_expired(now_ms):
            return outcome.as_expired()
        return outcome


@dataclass(frozen=True)
class GuardWriteResult:
    """Result of an atomic record-if-absent."""

    written: bool
    existing: ReceiptRecord | None = None


@dataclass(frozen=True)
class GrantLedgerEntry:
    """Entitlement appended to a user's purchase list."""

    product_id: str
    transaction_id: str
    purchase_date_ms: int
    platform: Platform

    def __post_init__(self) -> None:
        """Validate ledger entry fields."""
        if not self.transaction_id:
            raise ValueError("transaction_id required")
        if not self.product_id:
            raise ValueError("product_id required")


@dataclass(frozen=True)
class ValidationResult:
    """What the orchestrator hands back to the HTTP host."""

    outcome: ValidationOutcome
    granted: bool = False

    @property
    def cached(self) -> bool:
        """True if served from the replay guard without contacting the store."""
        return self.outcome.cached


@dataclass(frozen=True)
class StoreNotification:
    """Store lifecycle notification (renewal, cancellation, refund...)."""

    platform: Platform
    notification_id: str
    notification_type: str
    event_time_ms: int
    subtype: str | None = None
    product_id: str | None = None
    transaction_id: str | None = None

    def __post_init__(self) -> None:
        """Validate notification identity."""
        if not self.notification_id:
            raise ValueError("notification_id required")
        if not self.notification_type:
            raise ValueError("notification_type required")
