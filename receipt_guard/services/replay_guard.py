"""
Replay Guard - Maps a receipt key to the user that redeemed it.

The check-and-set is a single INSERT ... ON CONFLICT DO NOTHING against the
validated_receipts primary key, so two concurrent first-time validations of
the same receipt can never both own it.
"""

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from receipt_guard.db.models import ValidatedReceipt
from receipt_guard.models.domain import GuardWriteResult, ReceiptRecord

logger = get_logger(__name__)


class ReplayGuard:
    """Keyed lookup/insert against validated_receipts."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize replay guard with database session."""
        self.session = session

    async def lookup(self, receipt_key: str) -> ReceiptRecord | None:
        """Get the record stored under a receipt key, if any."""
        stmt = select(ValidatedReceipt).where(ValidatedReceipt.receipt_key == receipt_key)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return row.to_domain() if row is not None else None

    async def record_if_absent(self, receipt_key: str, record: ReceiptRecord) -> GuardWriteResult:
        """
        Atomically store a record unless the key is already taken.

        Does not commit; the caller commits together with the grant.

        Returns:
            GuardWriteResult(written=True) if this call created the record,
            otherwise written=False with the record that won.
        """
        stmt = (
            insert(ValidatedReceipt)
            .values(
                receipt_key=receipt_key,
                user_id=record.user_id,
                platform=record.platform.value,
                product_id=record.product_id,
                transaction_id=record.transaction_id,
                purchase_date_ms=record.purchase_date_ms,
                expiration_date_ms=record.expiration_date_ms,
                validated_at_ms=record.validated_at_ms,
            )
            .on_conflict_do_nothing(index_elements=[ValidatedReceipt.receipt_key])
            .returning(ValidatedReceipt.receipt_key)
        )
        result = await self.session.execute(stmt)
        if result.scalar_one_or_none() is not None:
            return GuardWriteResult(written=True)

        existing = await self.lookup(receipt_key)
        logger.info(
            "receipt_record_already_exists",
            transaction_id=record.transaction_id,
            owner_matches=existing is not None and existing.user_id == record.user_id,
        )
        return GuardWriteResult(written=False, existing=existing)
