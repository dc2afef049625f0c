"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create receipt, ledger and notification tables."""

    # ========================================================================
    # validated_receipts - replay guard, one row per redeemed receipt key
    # ========================================================================
    op.create_table(
        'validated_receipts',
        sa.Column('receipt_key', sa.String(255), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(16), nullable=False),
        sa.Column('product_id', sa.String(255), nullable=False),
        sa.Column('transaction_id', sa.String(255), nullable=False),
        sa.Column('purchase_date_ms', sa.BigInteger(), nullable=False),
        sa.Column('expiration_date_ms', sa.BigInteger(), nullable=True),
        sa.Column('validated_at_ms', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("platform IN ('ios', 'android')", name='ck_validated_receipts_platform'),
    )
    op.create_index('idx_validated_receipts_user_id', 'validated_receipts', ['user_id'])

    # ========================================================================
    # users / user_purchases - grant ledger
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'user_purchases',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(255), nullable=False),
        sa.Column('transaction_id', sa.String(255), nullable=False),
        sa.Column('purchase_date_ms', sa.BigInteger(), nullable=False),
        sa.Column('platform', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('user_id', 'transaction_id', name='uq_user_purchases_transaction'),
        sa.CheckConstraint("platform IN ('ios', 'android')", name='ck_user_purchases_platform'),
    )
    op.create_index('idx_user_purchases_user_id', 'user_purchases', ['user_id'])

    # ========================================================================
    # store_notifications - webhook intake, idempotent per delivery
    # ========================================================================
    op.create_table(
        'store_notifications',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('platform', sa.String(16), nullable=False),
        sa.Column('notification_id', sa.String(255), nullable=False),
        sa.Column('notification_type', sa.String(100), nullable=False),
        sa.Column('subtype', sa.String(100), nullable=True),
        sa.Column('product_id', sa.String(255), nullable=True),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('event_time_ms', sa.BigInteger(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('platform', 'notification_id', name='uq_store_notifications_delivery'),
    )
    op.create_index(
        'idx_store_notifications_transaction_id',
        'store_notifications',
        ['transaction_id'],
        postgresql_where=sa.text('transaction_id IS NOT NULL'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_store_notifications_transaction_id', table_name='store_notifications')
    op.drop_table('store_notifications')
    op.drop_index('idx_user_purchases_user_id', table_name='user_purchases')
    op.drop_table('user_purchases')
    op.drop_table('users')
    op.drop_index('idx_validated_receipts_user_id', table_name='validated_receipts')
    op.drop_table('validated_receipts')
