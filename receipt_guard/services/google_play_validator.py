"""
Google Play Purchase Validator.

Validates purchases using the Google Play Developer API v3:
https://developers.google.com/android-publisher/api-ref/rest/v3/purchases.products/get
https://developers.google.com/android-publisher/api-ref/rest/v3/purchases.subscriptions/get

The API client is blocking, so every call runs in a worker thread.
"""

import asyncio
import time
from typing import Any

import google.auth
from google.auth.exceptions import DefaultCredentialsError, RefreshError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from structlog import get_logger

from receipt_guard.exceptions import (
    NotConfiguredError,
    PurchaseNotFoundError,
    UpstreamUnavailableError,
)
from receipt_guard.models.domain import ValidationOutcome, epoch_ms_now
from receipt_guard.models.google_play import (
    ANDROID_PUBLISHER_SCOPE,
    GooglePlayConfig,
    GooglePlayProductPurchase,
    GooglePlaySubscriptionPurchase,
)
from receipt_guard.observability.metrics import metrics

logger = get_logger(__name__)

AUTH_FAILED = "API authentication failed. Check service account configuration."
PURCHASE_NOT_FOUND = "Purchase not found"
SUBSCRIPTION_NOT_FOUND = "Subscription not found"
SUBSCRIPTION_PAYMENT_INVALID = "Subscription payment pending or failed"


def _load_credentials(config: GooglePlayConfig) -> Any:
    """Publisher-scoped credentials from explicit service account or ADC."""
    scopes = [ANDROID_PUBLISHER_SCOPE]
    try:
        if config.service_account_info is not None:
            return service_account.Credentials.from_service_account_info(  # type: ignore[no-untyped-call]
                config.service_account_info, scopes=scopes
            )
        if config.service_account_file is not None:
            return service_account.Credentials.from_service_account_file(  # type: ignore[no-untyped-call]
                config.service_account_file, scopes=scopes
            )
        credentials, _project = google.auth.default(scopes=scopes)
        return credentials
    except DefaultCredentialsError as exc:
        raise NotConfiguredError(f"Google Play credentials not available: {exc}") from exc
    except (ValueError, OSError) as exc:
        raise NotConfiguredError(f"Invalid Google Play service account: {exc}") from exc


class GooglePlayValidator:
    """
    Google Play In-App Billing validator.

    Handles one-time products and subscriptions. Acknowledges unacknowledged
    purchases as a best-effort side effect.
    """

    platform = "android"

    def __init__(self, config: GooglePlayConfig, service: Any | None = None) -> None:
        """
        Initialize Google Play validator.

        Args:
            config: Package name and credential source
            service: Prebuilt androidpublisher resource (tests)

        Raises:
            NotConfiguredError: If no usable credentials are found
        """
        self.config = config
        self.package_name = config.package_name

        if service is None:
            credentials = _load_credentials(config)
            service = build("androidpublisher", "v3", credentials=credentials, cache_discovery=False)
        self.service = service

        logger.info("google_play_validator_initialized", package_name=config.package_name)

    async def _execute(self, request: Any, operation: str) -> dict[str, Any]:
        """Run a prepared API request off the event loop."""
        started = time.monotonic()
        try:
            result: dict[str, Any] | None = await asyncio.to_thread(request.execute)
            return result or {}
        finally:
            metrics.record_store_call(self.platform, operation, time.monotonic() - started)

    @staticmethod
    def _error_content(exc: HttpError) -> str:
        return exc.content.decode("utf-8") if exc.content else str(exc)

    def _rejected_for(
        self,
        exc: Exception,
        product_id: str,
        not_found_message: str = PURCHASE_NOT_FOUND,
    ) -> ValidationOutcome:
        """Map a failed store call to an invalid outcome."""
        if isinstance(exc, HttpError):
            status = exc.resp.status
            if status == 401:
                logger.error("google_play_authentication_failed", status=status)
                return ValidationOutcome.rejected(AUTH_FAILED)
            if status in (404, 410):
                logger.warning("google_play_purchase_not_found", product_id=product_id, status=status)
                return ValidationOutcome.rejected(not_found_message)
            if status >= 500:
                exc = UpstreamUnavailableError(f"Google Play API unavailable: HTTP {status}")
            else:
                logger.error(
                    "google_play_api_error",
                    product_id=product_id,
                    status=status,
                    error=self._error_content(exc),
                )
                return ValidationOutcome.rejected(
                    f"Google Play API error: {self._error_content(exc)}"
                )

        if isinstance(exc, RefreshError):
            logger.error("google_play_authentication_failed", error=str(exc))
            return ValidationOutcome.rejected(AUTH_FAILED)
        if isinstance(exc, PurchaseNotFoundError):
            logger.warning("google_play_purchase_not_found", product_id=product_id)
            return ValidationOutcome.rejected(exc.message)

        logger.error(
            "google_play_validation_error",
            product_id=product_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        metrics.record_error(type(exc).__name__, "google_validate")
        return ValidationOutcome.rejected(str(exc) or type(exc).__name__)

    async def validate(self, purchase_token: str, expected_product_id: str) -> ValidationOutcome:
        """
        Validate a one-time product purchase.

        Args:
            purchase_token: Purchase token from Google Play Billing
            expected_product_id: Product the client claims to have bought

        Returns:
            Normalized validation outcome
        """
        try:
            data = await self._execute(
                self.service.purchases()
                .products()
                .get(
                    packageName=self.package_name,
                    productId=expected_product_id,
                    token=purchase_token,
                ),
                "products.get",
            )
            if not data:
                raise PurchaseNotFoundError(PURCHASE_NOT_FOUND)
            purchase = GooglePlayProductPurchase.from_api(data)
        except Exception as exc:
            return self._rejected_for(exc, expected_product_id)

        state_error = purchase.state_error()
        if state_error is not None:
            logger.warning(
                "google_play_purchase_invalid_state",
                product_id=expected_product_id,
                order_id=purchase.order_id,
                purchase_state=purchase.purchase_state,
            )
            return ValidationOutcome(
                valid=False,
                product_id=expected_product_id,
                transaction_id=purchase.order_id or "",
                purchase_date_ms=0,
                error=state_error,
            )

        if purchase.is_consumed():
            # Replay protection is the replay guard's job, not consumption state
            logger.warning(
                "google_play_purchase_already_consumed",
                product_id=expected_product_id,
                order_id=purchase.order_id,
            )

        if purchase.needs_acknowledgement():
            await self.acknowledge(purchase_token, expected_product_id, purchase.order_id)

        logger.info(
            "google_play_purchase_validated",
            product_id=expected_product_id,
            order_id=purchase.order_id,
            is_test=purchase.is_test_purchase(),
        )

        return ValidationOutcome(
            valid=True,
            product_id=expected_product_id,
            transaction_id=purchase.order_id or purchase_token,
            purchase_date_ms=purchase.purchase_time_millis or epoch_ms_now(),
        )

    async def acknowledge(
        self, purchase_token: str, product_id: str, order_id: str | None = None
    ) -> bool:
        """
        Acknowledge a purchase (required within 3 days).

        Best effort: failures are logged, never raised.

        Returns:
            True if the acknowledgement succeeded
        """
        logger.info(
            "acknowledging_google_play_purchase",
            product_id=product_id,
            order_id=order_id,
        )
        try:
            await self._execute(
                self.service.purchases()
                .products()
                .acknowledge(
                    packageName=self.package_name,
                    productId=product_id,
                    token=purchase_token,
                ),
                "products.acknowledge",
            )
        except Exception as exc:
            logger.warning(
                "google_play_acknowledgement_failed",
                product_id=product_id,
                order_id=order_id,
                error=str(exc),
            )
            return False

        logger.info("google_play_purchase_acknowledged", product_id=product_id, order_id=order_id)
        return True

    async def validate_subscription(
        self, purchase_token: str, subscription_id: str
    ) -> ValidationOutcome:
        """
        Validate a subscription purchase.

        Args:
            purchase_token: Purchase token from Google Play Billing
            subscription_id: Subscription product ID

        Returns:
            Normalized validation outcome
        """
        try:
            data = await self._execute(
                self.service.purchases()
                .subscriptions()
                .get(
                    packageName=self.package_name,
                    subscriptionId=subscription_id,
                    token=purchase_token,
                ),
                "subscriptions.get",
            )
            if not data:
                raise PurchaseNotFoundError(SUBSCRIPTION_NOT_FOUND)
            subscription = GooglePlaySubscriptionPurchase.from_api(data)
        except Exception as exc:
            return self._rejected_for(exc, subscription_id, SUBSCRIPTION_NOT_FOUND)

        if not subscription.is_payment_accepted():
            logger.warning(
                "google_play_subscription_payment_invalid",
                subscription_id=subscription_id,
                order_id=subscription.order_id,
                payment_state=subscription.payment_state,
            )
            return ValidationOutcome(
                valid=False,
                product_id=subscription_id,
                transaction_id=subscription.order_id or "",
                purchase_date_ms=0,
                error=SUBSCRIPTION_PAYMENT_INVALID,
            )

        outcome = ValidationOutcome(
            valid=True,
            product_id=subscription_id,
            transaction_id=subscription.order_id or purchase_token,
            purchase_date_ms=subscription.start_time_millis,
            expiration_date_ms=subscription.expiry_time_millis or None,
        )

        if outcome.is_expired(epoch_ms_now()):
            logger.warning(
                "google_play_subscription_expired",
                subscription_id=subscription_id,
                order_id=subscription.order_id,
                expiration_date_ms=subscription.expiry_time_millis,
            )
            return outcome.as_expired()

        logger.info(
            "google_play_subscription_validated",
            subscription_id=subscription_id,
            order_id=subscription.order_id,
        )
        return outcome
