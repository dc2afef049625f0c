"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Store timestamps are kept as epoch
milliseconds (BigInteger) exactly as the stores report them.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from receipt_guard.models.domain import GrantLedgerEntry, Platform, ReceiptRecord


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class ValidatedReceipt(Base):
    """
    ORM model for validated_receipts table.

    One row per redeemed receipt key. The primary key is the uniqueness
    guarantee the replay guard's conditional insert relies on.
    """

    __tablename__ = "validated_receipts"

    # Transaction ID when known, else SHA-256 hex of the receipt payload
    receipt_key: Mapped[str] = mapped_column(String(255), primary_key=True)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    purchase_date_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expiration_date_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    validated_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_validated_receipts_user_id", "user_id"),)

    def to_domain(self) -> ReceiptRecord:
        """Convert to domain record."""
        return ReceiptRecord(
            user_id=self.user_id,
            platform=Platform(self.platform),
            product_id=self.product_id,
            transaction_id=self.transaction_id,
            purchase_date_ms=self.purchase_date_ms,
            expiration_date_ms=self.expiration_date_ms,
            validated_at_ms=self.validated_at_ms,
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ValidatedReceipt(transaction_id={self.transaction_id}, "
            f"user_id={self.user_id}, product_id={self.product_id})>"
        )


class User(Base):
    """
    ORM model for users table.

    Owner of the purchases sequence.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id})>"


class UserPurchase(Base):
    """
    ORM model for user_purchases table.

    The grant ledger. Insertion order (id) is the restore order.
    """

    __tablename__ = "user_purchases"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    purchase_date_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "transaction_id", name="uq_user_purchases_transaction"),
        Index("idx_user_purchases_user_id", "user_id"),
    )

    def to_domain(self) -> GrantLedgerEntry:
        """Convert to ledger entry."""
        return GrantLedgerEntry(
            product_id=self.product_id,
            transaction_id=self.transaction_id,
            purchase_date_ms=self.purchase_date_ms,
            platform=Platform(self.platform),
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserPurchase(user_id={self.user_id}, transaction_id={self.transaction_id}, "
            f"product_id={self.product_id})>"
        )


class StoreNotificationRecord(Base):
    """
    ORM model for store_notifications table.

    Stores deliver notifications at least once; (platform, notification_id)
    makes recording idempotent.
    """

    __tablename__ = "store_notifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    notification_id: Mapped[str] = mapped_column(String(255), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subtype: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("platform", "notification_id", name="uq_store_notifications_delivery"),
        Index("idx_store_notifications_transaction_id", "transaction_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<StoreNotificationRecord(platform={self.platform}, "
            f"type={self.notification_type}, notification_id={self.notification_id})>"
        )
