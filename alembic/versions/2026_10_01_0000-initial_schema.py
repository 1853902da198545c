"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create entitlement schema."""

    # ========================================================================
    # profiles
    # ========================================================================
    op.create_table(
        'profiles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_event_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("subscription_tier IN ('free', 'pro', 'enterprise')", name='ck_profile_tier'),
    )

    # ========================================================================
    # apps
    # ========================================================================
    op.create_table(
        'apps',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('developer_id', UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('pricing_type', sa.String(20), nullable=False, server_default='free'),
        sa.Column('price_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('price_minor >= 0', name='ck_app_price_non_negative'),
        sa.CheckConstraint("pricing_type IN ('free', 'one_time', 'subscription', 'freemium')", name='ck_app_pricing_type'),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name='ck_app_status'),
        sa.ForeignKeyConstraint(['developer_id'], ['profiles.id'], name='fk_apps_developer', ondelete='RESTRICT'),
    )
    op.create_index('ix_apps_developer_id', 'apps', ['developer_id'])
    op.create_index('idx_apps_status', 'apps', ['status'])

    # ========================================================================
    # transactions - append-only ledger
    # ========================================================================
    op.create_table(
        'transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('app_id', UUID(as_uuid=True), nullable=True),
        sa.Column('plan_tier', sa.String(20), nullable=True),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('mode', sa.String(20), nullable=False, server_default='payment'),
        sa.Column('processor_reference', sa.String(255), nullable=False),
        sa.Column('payment_intent_id', sa.String(255), nullable=True),
        sa.Column('completed_by_event_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount_minor >= 0', name='ck_transaction_amount_non_negative'),
        sa.CheckConstraint("status IN ('pending', 'completed', 'failed')", name='ck_transaction_status'),
        sa.UniqueConstraint('processor_reference', name='uq_transaction_processor_reference'),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name='fk_transactions_user', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['app_id'], ['apps.id'], name='fk_transactions_app', ondelete='RESTRICT'),
    )
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_app_id', 'transactions', ['app_id'])
    op.create_index('idx_transactions_user_status', 'transactions', ['user_id', 'status'])
    op.create_index('idx_transactions_created_at', 'transactions', ['created_at'])

    # ========================================================================
    # app_purchases - durable entitlements
    # ========================================================================
    op.create_table(
        'app_purchases',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('app_id', UUID(as_uuid=True), nullable=False),
        sa.Column('transaction_id', UUID(as_uuid=True), nullable=True),
        sa.Column('processor_reference', sa.String(255), nullable=False),
        sa.Column('purchase_date', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('user_id', 'app_id', name='uq_app_purchase_user_app'),
        sa.UniqueConstraint('processor_reference', name='uq_app_purchase_processor_reference'),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name='fk_app_purchases_user', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['app_id'], ['apps.id'], name='fk_app_purchases_app', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], name='fk_app_purchases_transaction', ondelete='SET NULL'),
    )
    op.create_index('idx_app_purchases_user', 'app_purchases', ['user_id'])

    # ========================================================================
    # subscriptions
    # ========================================================================
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('tier', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('processor_subscription_id', sa.String(255), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('processor_subscription_id', name='uq_subscription_processor_subscription_id'),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name='fk_subscriptions_user', ondelete='RESTRICT'),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])

    # ========================================================================
    # stripe_events - processed webhook ledger
    # ========================================================================
    op.create_table(
        'stripe_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(255), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    # ========================================================================
    # notifications
    # ========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name='fk_notifications_user', ondelete='CASCADE'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('notifications')
    op.drop_table('stripe_events')
    op.drop_table('subscriptions')
    op.drop_table('app_purchases')
    op.drop_table('transactions')
    op.drop_table('apps')
    op.drop_table('profiles')
