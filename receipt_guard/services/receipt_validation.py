"""
Receipt Validation Service - Orchestrates guard lookup, store validation,
persistence and grant.

Per request:
    Start -> GuardLookup -> CacheHit                      -> Returned(valid, cached)
                         -> Dispatch -> Invalid            -> Returned(invalid)
                                     -> Valid -> Persist -> Grant -> Returned(valid)
    Receipt key or store transaction owned by another user -> Rejected(replay)
    Missing store configuration -> Rejected(config)

Persist and Grant share one database transaction, so a receipt record never
exists without its grant and vice versa.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from receipt_guard.exceptions import (
    InternalError,
    ReceiptGuardError,
    ReplayDetectedError,
)
from receipt_guard.models.domain import (
    TRANSACTION_MISMATCH_MESSAGE,
    GrantLedgerEntry,
    Platform,
    ProductType,
    ReceiptRecord,
    ValidationOutcome,
    ValidationRequest,
    ValidationResult,
    epoch_ms_now,
    receipt_fingerprint,
)
from receipt_guard.observability.metrics import metrics
from receipt_guard.observability.tracing import trace_operation
from receipt_guard.services.grant_ledger import GrantLedger
from receipt_guard.services.replay_guard import ReplayGuard
from receipt_guard.services.validators import ValidatorRegistry

logger = get_logger(__name__)


class ReceiptValidationService:
    """Single entry point for receipt validation and restore."""

    def __init__(
        self,
        session: AsyncSession,
        validators: ValidatorRegistry,
        replay_guard: ReplayGuard | None = None,
        grant_ledger: GrantLedger | None = None,
    ) -> None:
        """Initialize with a request-scoped session and the process-wide validators."""
        self.session = session
        self.validators = validators
        self.replay_guard = replay_guard or ReplayGuard(session)
        self.grant_ledger = grant_ledger or GrantLedger(session)

    async def validate_receipt(
        self, user_id: str, request: ValidationRequest
    ) -> ValidationResult:
        """
        Validate a receipt for a user and grant the entitlement.

        Raises:
            ReplayDetectedError: Receipt already redeemed by another user
            NotConfiguredError: No usable validator for the platform
            InternalError: Unexpected failure (transaction rolled back)
        """
        log = logger.bind(
            user_id=user_id,
            platform=request.platform.value,
            product_id=request.product_id,
            transaction_id=request.transaction_id,
            receipt=receipt_fingerprint(request.receipt_payload),
        )
        receipt_key = request.receipt_key

        try:
            existing = await self.replay_guard.lookup(receipt_key)
            if existing is not None:
                return self._serve_existing(existing, user_id, receipt_key, request.platform)

            # Release the read transaction before calling the store
            await self.session.rollback()

            with trace_operation(
                "store_validation",
                platform=request.platform.value,
                product_id=request.product_id,
            ) as span:
                outcome = await self._dispatch(request)
                span.set_attribute("valid", outcome.valid)
            if outcome.valid and request.transaction_id not in (None, outcome.transaction_id):
                log.warning(
                    "receipt_transaction_mismatch",
                    validated_transaction_id=outcome.transaction_id,
                )
                outcome = ValidationOutcome.rejected(TRANSACTION_MISMATCH_MESSAGE)
            if not outcome.valid:
                log.warning("invalid_receipt_detected", reason=outcome.error)
                metrics.record_validation(request.platform.value, "invalid")
                return ValidationResult(outcome=outcome)

            record = ReceiptRecord(
                user_id=user_id,
                platform=request.platform,
                product_id=outcome.product_id,
                transaction_id=outcome.transaction_id,
                purchase_date_ms=outcome.purchase_date_ms,
                expiration_date_ms=outcome.expiration_date_ms,
                validated_at_ms=epoch_ms_now(),
            )
            # Claim the store transaction ID as well as the request key
            claim_keys = [receipt_key]
            if outcome.transaction_id and outcome.transaction_id != receipt_key:
                claim_keys.append(outcome.transaction_id)
            for key in claim_keys:
                write = await self.replay_guard.record_if_absent(key, record)
                if not write.written:
                    await self.session.rollback()
                    if write.existing is None:
                        raise InternalError("Receipt record missing after write conflict")
                    return self._serve_existing(write.existing, user_id, key, request.platform)

            granted = await self.grant_ledger.append_purchase(
                user_id,
                GrantLedgerEntry(
                    product_id=outcome.product_id,
                    transaction_id=outcome.transaction_id,
                    purchase_date_ms=outcome.purchase_date_ms,
                    platform=request.platform,
                ),
            )
            await self.session.commit()

        except ReceiptGuardError:
            await self.session.rollback()
            raise
        except Exception as exc:
            await self.session.rollback()
            log.exception("receipt_validation_unexpected_error")
            metrics.record_validation(request.platform.value, "error")
            raise InternalError(f"Failed to validate receipt: {exc}") from exc

        if granted:
            metrics.record_grant(request.platform.value)
        metrics.record_validation(request.platform.value, "valid")
        log.info(
            "receipt_validated",
            validated_transaction_id=outcome.transaction_id,
            granted=granted,
        )
        return ValidationResult(outcome=outcome, granted=granted)

    def _serve_existing(
        self,
        existing: ReceiptRecord,
        user_id: str,
        receipt_key: str,
        platform: Platform,
    ) -> ValidationResult:
        """Cached result for the owner, replay rejection for anyone else."""
        if existing.user_id != user_id:
            logger.warning(
                "receipt_replay_attack_detected",
                user_id=user_id,
                original_user_id=existing.user_id,
                platform=platform.value,
                product_id=existing.product_id,
                transaction_id=existing.transaction_id,
            )
            metrics.record_validation(platform.value, "replay")
            raise ReplayDetectedError(receipt_key, existing.user_id, user_id)

        logger.info(
            "receipt_served_from_cache",
            user_id=user_id,
            platform=platform.value,
            transaction_id=existing.transaction_id,
        )
        metrics.record_validation(platform.value, "cached")
        return ValidationResult(outcome=existing.to_outcome())

    async def _dispatch(self, request: ValidationRequest) -> ValidationOutcome:
        """Invoke the validator for the request's platform."""
        if request.platform == Platform.ANDROID:
            google = self.validators.for_platform(Platform.ANDROID)
            if request.product_type == ProductType.SUBSCRIPTION:
                return await google.validate_subscription(
                    request.receipt_payload, request.product_id
                )
            return await google.validate(request.receipt_payload, request.product_id)

        apple = self.validators.for_platform(Platform.IOS)
        return await apple.validate(
            request.receipt_payload, request.product_id, request.transaction_id
        )

    async def restore_purchases(self, user_id: str) -> list[GrantLedgerEntry]:
        """All entitlements granted to a user, in grant order."""
        purchases = await self.grant_ledger.restore(user_id)
        logger.info("purchases_restored", user_id=user_id, count=len(purchases))
        return purchases
