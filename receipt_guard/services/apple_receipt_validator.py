"""
Apple App Store Receipt Validator.

Validates receipts with Apple's verifyReceipt API.
https://developer.apple.com/documentation/appstorereceipts/verifyreceipt

Production is always tried first. A sandbox receipt (21007) is resubmitted
once to the sandbox endpoint; a production receipt reported by production
(21008) is final.
"""

import time

import httpx
from structlog import get_logger

from receipt_guard.exceptions import NotConfiguredError, UpstreamUnavailableError
from receipt_guard.models.apple import (
    AppleInAppPurchase,
    AppleReceiptConfig,
    AppleReceiptStatus,
    status_message,
)
from receipt_guard.models.domain import (
    TRANSACTION_MISMATCH_MESSAGE,
    ValidationOutcome,
    epoch_ms_now,
)
from receipt_guard.observability.metrics import metrics

logger = get_logger(__name__)

PRODUCT_NOT_FOUND = "Product ID not found in receipt"


class AppleReceiptValidator:
    """
    Apple verifyReceipt validator.

    Pure with respect to persistence: the only side effects are HTTP calls.
    """

    platform = "ios"

    def __init__(
        self,
        config: AppleReceiptConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize Apple receipt validator.

        Args:
            config: verifyReceipt configuration with the shared secret
            transport: Optional httpx transport (tests)

        Raises:
            NotConfiguredError: If the shared secret is missing
        """
        if not config.shared_secret:
            raise NotConfiguredError(
                "Apple shared secret not configured. Set APPLE_SHARED_SECRET."
            )
        self.config = config
        self._transport = transport

        logger.info(
            "apple_receipt_validator_initialized",
            production_url=config.production_url,
            sandbox_url=config.sandbox_url,
        )

    async def _post_receipt(
        self, client: httpx.AsyncClient, url: str, receipt_data: str
    ) -> dict[str, object]:
        """Submit a receipt to one verifyReceipt endpoint."""
        started = time.monotonic()
        try:
            response = await client.post(
                url,
                json={
                    "receipt-data": receipt_data,
                    "password": self.config.shared_secret,
                    "exclude-old-transactions": True,
                },
            )
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError(f"App Store request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"App Store request failed: {exc}") from exc
        finally:
            metrics.record_store_call(self.platform, "verify_receipt", time.monotonic() - started)

        if response.status_code >= 400:
            logger.error(
                "apple_verify_receipt_http_error",
                status=response.status_code,
                url=url,
            )
            raise UpstreamUnavailableError(
                f"App Store returned HTTP {response.status_code}"
            )

        body: dict[str, object] = response.json()
        return body

    async def _verify(self, receipt_data: str) -> dict[str, object]:
        """Run the production-then-sandbox routing and return the final response."""
        async with httpx.AsyncClient(
            timeout=self.config.timeout_seconds, transport=self._transport
        ) as client:
            body = await self._post_receipt(client, self.config.production_url, receipt_data)
            status = body.get("status")

            if status == AppleReceiptStatus.SANDBOX_RECEIPT:
                logger.info("apple_receipt_is_sandbox_retrying")
                body = await self._post_receipt(client, self.config.sandbox_url, receipt_data)
            elif status == AppleReceiptStatus.PRODUCTION_RECEIPT:
                logger.info("apple_receipt_is_production")

            return body

    @staticmethod
    def _find_purchase(
        body: dict[str, object],
        expected_product_id: str,
        expected_transaction_id: str | None = None,
    ) -> tuple[AppleInAppPurchase | None, list[str]]:
        """
        Find the first entry for the product; latest_receipt_info wins over in_app.

        With an expected transaction ID only that transaction matches.
        """
        receipt = body.get("receipt")
        in_app = (receipt.get("in_app") or []) if isinstance(receipt, dict) else []
        latest = body.get("latest_receipt_info") or []

        entries = [AppleInAppPurchase.from_payload(item) for item in [*latest, *in_app]]
        for entry in entries:
            if entry.product_id != expected_product_id:
                continue
            if expected_transaction_id is None or (
                entry.effective_transaction_id == expected_transaction_id
            ):
                return entry, []
        return None, [entry.product_id for entry in entries]

    async def validate(
        self,
        receipt_data: str,
        expected_product_id: str,
        expected_transaction_id: str | None = None,
    ) -> ValidationOutcome:
        """
        Validate an App Store receipt.

        Never raises for validation failures; every store or network problem
        becomes an invalid outcome.

        Args:
            receipt_data: Base64 encoded receipt
            expected_product_id: Product the client claims to have bought
            expected_transaction_id: Transaction the client claims, if any

        Returns:
            Normalized validation outcome
        """
        try:
            body = await self._verify(receipt_data)

            status = body.get("status")
            if status != AppleReceiptStatus.VALID:
                error = status_message(int(status)) if status is not None else (
                    "Missing status in App Store response"
                )
                logger.warning(
                    "apple_receipt_validation_failed",
                    status=status,
                    error=error,
                )
                return ValidationOutcome.rejected(error)

            purchase, found_products = self._find_purchase(
                body, expected_product_id, expected_transaction_id
            )
            if purchase is None:
                if expected_transaction_id is not None and expected_product_id in found_products:
                    logger.warning(
                        "apple_transaction_not_found_in_receipt",
                        expected_product_id=expected_product_id,
                        expected_transaction_id=expected_transaction_id,
                    )
                    return ValidationOutcome.rejected(TRANSACTION_MISMATCH_MESSAGE)
                logger.warning(
                    "apple_product_not_found_in_receipt",
                    expected_product_id=expected_product_id,
                    found_products=found_products,
                )
                return ValidationOutcome.rejected(PRODUCT_NOT_FOUND)

            outcome = ValidationOutcome(
                valid=True,
                product_id=purchase.product_id,
                transaction_id=purchase.effective_transaction_id,
                purchase_date_ms=purchase.purchase_date_ms,
                expiration_date_ms=purchase.expires_date_ms,
            )

            if outcome.is_expired(epoch_ms_now()):
                logger.warning(
                    "apple_subscription_expired",
                    product_id=purchase.product_id,
                    transaction_id=outcome.transaction_id,
                    expiration_date_ms=purchase.expires_date_ms,
                )
                return outcome.as_expired()

            logger.info(
                "apple_receipt_validated",
                product_id=outcome.product_id,
                transaction_id=outcome.transaction_id,
            )
            return outcome

        except Exception as exc:
            logger.error(
                "apple_receipt_validation_error",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            metrics.record_error(type(exc).__name__, "apple_validate")
            return ValidationOutcome.rejected(str(exc) or type(exc).__name__)
