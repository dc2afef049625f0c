"""
Store Notification Recorder - Idempotent intake for store lifecycle events.

Apple App Store Server Notifications V2 and Google Play Real-time Developer
Notifications are delivered at least once. Each delivery is recorded under
(platform, notification_id); redeliveries are no-ops. Nothing here acts on
the events (renewal tracking and refund propagation are handled elsewhere).
"""

import base64
import binascii
import json
from typing import Any

import jwt
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from receipt_guard.db.models import StoreNotificationRecord
from receipt_guard.exceptions import InvalidArgumentError
from receipt_guard.models.domain import Platform, StoreNotification

logger = get_logger(__name__)

# https://developer.android.com/google/play/billing/rtdn-reference
ONE_TIME_PRODUCT_TYPES: dict[int, str] = {
    1: "ONE_TIME_PRODUCT_PURCHASED",
    2: "ONE_TIME_PRODUCT_CANCELED",
}

SUBSCRIPTION_TYPES: dict[int, str] = {
    1: "SUBSCRIPTION_RECOVERED",
    2: "SUBSCRIPTION_RENEWED",
    3: "SUBSCRIPTION_CANCELED",
    4: "SUBSCRIPTION_PURCHASED",
    5: "SUBSCRIPTION_ON_HOLD",
    6: "SUBSCRIPTION_IN_GRACE_PERIOD",
    7: "SUBSCRIPTION_RESTARTED",
    8: "SUBSCRIPTION_PRICE_CHANGE_CONFIRMED",
    9: "SUBSCRIPTION_DEFERRED",
    10: "SUBSCRIPTION_PAUSED",
    11: "SUBSCRIPTION_PAUSE_SCHEDULE_CHANGED",
    12: "SUBSCRIPTION_REVOKED",
    13: "SUBSCRIPTION_EXPIRED",
}


def _as_object(value: Any, what: str) -> dict[str, Any]:
    """Require a JSON object."""
    if not isinstance(value, dict):
        raise InvalidArgumentError(f"{what} is not a JSON object")
    return value


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _decode_jws(signed_data: Any) -> dict[str, Any]:
    """
    Decode JWS signed data from Apple without signature verification.

    TODO: verify the x5c chain against Apple's root CA before acting on events.
    """
    if not isinstance(signed_data, str):
        raise InvalidArgumentError("JWS data is not a string")
    try:
        payload = jwt.decode(signed_data, options={"verify_signature": False})
    except jwt.exceptions.DecodeError as exc:
        raise InvalidArgumentError(f"Invalid JWS data: {exc}") from exc
    return _as_object(payload, "JWS payload")


def parse_apple_notification(payload: bytes) -> StoreNotification:
    """
    Parse an App Store Server Notification V2 body: {"signedPayload": <JWS>}.

    Raises:
        InvalidArgumentError: If the body is not a decodable notification
    """
    try:
        body = json.loads(payload)
    except ValueError as exc:
        raise InvalidArgumentError(f"Invalid JSON payload: {exc}") from exc

    signed_payload = _as_object(body, "Notification body").get("signedPayload")
    if not signed_payload:
        raise InvalidArgumentError("No signedPayload in notification")

    notification = _decode_jws(signed_payload)
    data = _as_object(notification.get("data") or {}, "Notification data")

    product_id: str | None = None
    transaction_id: str | None = None
    signed_transaction = data.get("signedTransactionInfo")
    if signed_transaction:
        transaction = _decode_jws(signed_transaction)
        product_id = _optional_str(transaction.get("productId"))
        transaction_id = _optional_str(
            transaction.get("transactionId") or transaction.get("originalTransactionId")
        )

    try:
        return StoreNotification(
            platform=Platform.IOS,
            notification_id=str(notification.get("notificationUUID") or ""),
            notification_type=str(notification.get("notificationType") or ""),
            subtype=_optional_str(notification.get("subtype")),
            event_time_ms=int(notification.get("signedDate") or 0),
            product_id=product_id,
            transaction_id=transaction_id,
        )
    except (ValueError, TypeError) as exc:
        raise InvalidArgumentError(f"Incomplete Apple notification: {exc}") from exc


def parse_google_notification(payload: bytes) -> StoreNotification:
    """
    Parse a Pub/Sub push body carrying a Real-time Developer Notification.

    Raises:
        InvalidArgumentError: If the body is not a decodable notification
    """
    try:
        body = json.loads(payload)
    except ValueError as exc:
        raise InvalidArgumentError(f"Invalid Pub/Sub payload: {exc}") from exc

    envelope = _as_object(body, "Pub/Sub body")
    message = _as_object(envelope.get("message") or {}, "Pub/Sub message")
    encoded = message.get("data")
    if not encoded or not isinstance(encoded, str):
        raise InvalidArgumentError("No message data in notification")
    try:
        notification = json.loads(base64.b64decode(encoded).decode("utf-8"))
    except (ValueError, binascii.Error) as exc:
        raise InvalidArgumentError(f"Invalid Pub/Sub message data: {exc}") from exc
    notification = _as_object(notification, "Developer notification")

    try:
        product_id: str | None = None
        transaction_id: str | None = None
        if "oneTimeProductNotification" in notification:
            detail = _as_object(notification["oneTimeProductNotification"], "Product notification")
            code = int(detail.get("notificationType", 0))
            notification_type = ONE_TIME_PRODUCT_TYPES.get(code, f"ONE_TIME_PRODUCT_{code}")
            product_id = _optional_str(detail.get("sku"))
        elif "subscriptionNotification" in notification:
            detail = _as_object(
                notification["subscriptionNotification"], "Subscription notification"
            )
            code = int(detail.get("notificationType", 0))
            notification_type = SUBSCRIPTION_TYPES.get(code, f"SUBSCRIPTION_{code}")
            product_id = _optional_str(detail.get("subscriptionId"))
        elif "voidedPurchaseNotification" in notification:
            detail = _as_object(notification["voidedPurchaseNotification"], "Voided notification")
            notification_type = "VOIDED_PURCHASE"
            transaction_id = _optional_str(detail.get("orderId"))
        elif "testNotification" in notification:
            notification_type = "TEST"
        else:
            notification_type = "UNKNOWN"

        return StoreNotification(
            platform=Platform.ANDROID,
            notification_id=str(message.get("messageId") or message.get("message_id") or ""),
            notification_type=notification_type,
            event_time_ms=int(notification.get("eventTimeMillis") or 0),
            product_id=product_id,
            transaction_id=transaction_id,
        )
    except (ValueError, TypeError) as exc:
        raise InvalidArgumentError(f"Incomplete Google notification: {exc}") from exc


class StoreNotificationService:
    """Records store notifications exactly once per delivery ID."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with database session."""
        self.session = session

    async def record(self, notification: StoreNotification) -> bool:
        """
        Record a notification.

        Returns:
            True on first delivery, False for a redelivery
        """
        stmt = (
            insert(StoreNotificationRecord)
            .values(
                platform=notification.platform.value,
                notification_id=notification.notification_id,
                notification_type=notification.notification_type,
                subtype=notification.subtype,
                product_id=notification.product_id,
                transaction_id=notification.transaction_id,
                event_time_ms=notification.event_time_ms,
            )
            .on_conflict_do_nothing(constraint="uq_store_notifications_delivery")
            .returning(StoreNotificationRecord.id)
        )
        result = await self.session.execute(stmt)
        recorded = result.scalar_one_or_none() is not None
        await self.session.commit()

        logger.info(
            "store_notification_received",
            platform=notification.platform.value,
            notification_type=notification.notification_type,
            subtype=notification.subtype,
            notification_id=notification.notification_id,
            transaction_id=notification.transaction_id,
            duplicate=not recorded,
        )
        return recorded
