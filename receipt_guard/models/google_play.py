"""
Google Play domain models - Immutable dataclasses for purchase verification.

State enumerations follow the Google Play Developer API v3:
https://developers.google.com/android-publisher/api-ref/rest/v3/purchases.products
https://developers.google.com/android-publisher/api-ref/rest/v3/purchases.subscriptions
"""

from dataclasses import dataclass
from enum import IntEnum

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"


class PurchaseState(IntEnum):
    """purchases.products purchaseState."""

    PURCHASED = 0
    CANCELLED = 1
    PENDING = 2


PURCHASE_STATE_ERRORS: dict[int, str] = {
    PurchaseState.CANCELLED: "Purchase was cancelled",
    PurchaseState.PENDING: "Purchase is pending",
}
INVALID_PURCHASE_STATE = "Invalid purchase state"


class PaymentState(IntEnum):
    """purchases.subscriptions paymentState."""

    PENDING = 0
    RECEIVED = 1
    FREE_TRIAL = 2
    PENDING_DEFERRED = 3


ACCEPTED_PAYMENT_STATES = frozenset({PaymentState.RECEIVED, PaymentState.FREE_TRIAL})


@dataclass(frozen=True)
class GooglePlayConfig:
    """Configuration for the Google Play Developer API."""

    package_name: str
    # Service account credentials as parsed JSON, a file path, or None for ADC
    service_account_info: dict[str, str] | None = None
    service_account_file: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration fields."""
        if not self.package_name:
            raise ValueError("Android package name is required")
        if self.service_account_info is not None and self.service_account_file is not None:
            raise ValueError("Provide service account info or file, not both")

    def __repr__(self) -> str:
        """Never render credentials."""
        source = "file" if self.service_account_file else "info" if self.service_account_info else "adc"
        return f"GooglePlayConfig(package_name={self.package_name!r}, credentials={source})"


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(str(value))


@dataclass(frozen=True)
class GooglePlayProductPurchase:
    """purchases.products resource."""

    order_id: str | None
    purchase_state: int | None
    consumption_state: int  # 0: not consumed, 1: consumed
    acknowledgement_state: int  # 0: not acknowledged, 1: acknowledged
    purchase_time_millis: int | None
    purchase_type: int | None = None  # None: real, 0: test, 1: promo, 2: rewarded

    @classmethod
    def from_api(cls, data: dict[str, object]) -> "GooglePlayProductPurchase":
        """Parse API response. int64 fields arrive as strings."""
        return cls(
            order_id=str(data["orderId"]) if data.get("orderId") else None,
            purchase_state=_optional_int(data.get("purchaseState")),
            consumption_state=_optional_int(data.get("consumptionState")) or 0,
            acknowledgement_state=_optional_int(data.get("acknowledgementState")) or 0,
            purchase_time_millis=_optional_int(data.get("purchaseTimeMillis")),
            purchase_type=_optional_int(data.get("purchaseType")),
        )

    def state_error(self) -> str | None:
        """Error message for a non-purchased state, None when purchased."""
        if self.purchase_state == PurchaseState.PURCHASED:
            return None
        if self.purchase_state is None:
            return INVALID_PURCHASE_STATE
        return PURCHASE_STATE_ERRORS.get(self.purchase_state, INVALID_PURCHASE_STATE)

    def is_consumed(self) -> bool:
        """Check if the purchase was already consumed."""
        return self.consumption_state == 1

    def needs_acknowledgement(self) -> bool:
        """Check if purchase needs acknowledgement (refunded after 3 days otherwise)."""
        return self.acknowledgement_state == 0

    def is_test_purchase(self) -> bool:
        """Check if this is a test purchase (license tester account)."""
        return self.purchase_type == 0


@dataclass(frozen=True)
class GooglePlaySubscriptionPurchase:
    """purchases.subscriptions resource."""

    order_id: str | None
    payment_state: int | None
    start_time_millis: int
    expiry_time_millis: int | None

    @classmethod
    def from_api(cls, data: dict[str, object]) -> "GooglePlaySubscriptionPurchase":
        """Parse API response."""
        return cls(
            order_id=str(data["orderId"]) if data.get("orderId") else None,
            payment_state=_optional_int(data.get("paymentState")),
            start_time_millis=_optional_int(data.get("startTimeMillis")) or 0,
            expiry_time_millis=_optional_int(data.get("expiryTimeMillis")),
        )

    def is_payment_accepted(self) -> bool:
        """Payment received or free trial."""
        return self.payment_state in ACCEPTED_PAYMENT_STATES
