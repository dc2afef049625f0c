"""
Grant Ledger - Per-user entitlement list.

Append is idempotent by (user_id, transaction_id): repeated grants of the
same transaction never produce a second entry.
"""

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from receipt_guard.db.models import User, UserPurchase, utc_now
from receipt_guard.models.domain import GrantLedgerEntry

logger = get_logger(__name__)


class GrantLedger:
    """Append-if-absent purchase ledger backed by user_purchases."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize grant ledger with database session."""
        self.session = session

    async def append_purchase(self, user_id: str, entry: GrantLedgerEntry) -> bool:
        """
        Append an entitlement unless the transaction is already granted.

        Does not commit; the caller owns the transaction.

        Returns:
            True if a new entry was added, False if it was already present
        """
        upsert_user = (
            insert(User)
            .values(id=user_id)
            .on_conflict_do_update(index_elements=[User.id], set_={"updated_at": utc_now()})
        )
        await self.session.execute(upsert_user)

        stmt = (
            insert(UserPurchase)
            .values(
                user_id=user_id,
                product_id=entry.product_id,
                transaction_id=entry.transaction_id,
                purchase_date_ms=entry.purchase_date_ms,
                platform=entry.platform.value,
            )
            .on_conflict_do_nothing(constraint="uq_user_purchases_transaction")
            .returning(UserPurchase.id)
        )
        result = await self.session.execute(stmt)
        added = result.scalar_one_or_none() is not None

        if not added:
            logger.info(
                "grant_already_present",
                user_id=user_id,
                transaction_id=entry.transaction_id,
            )
        return added

    async def restore(self, user_id: str) -> list[GrantLedgerEntry]:
        """All entitlements of a user in grant order. Unknown user -> []."""
        stmt = (
            select(UserPurchase)
            .where(UserPurchase.user_id == user_id)
            .order_by(UserPurchase.id)
        )
        result = await self.session.execute(stmt)
        return [row.to_domain() for row in result.scalars().all()]
