"""Initial schema - users, subscriptions, instances, configs, telegram pairings

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), unique=True, nullable=False),
        sa.Column('stripe_customer_id', sa.String(100), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(100), unique=True, nullable=True),
        sa.Column('stripe_price_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), server_default='active'),
        sa.Column('tier', sa.String(20), server_default='pro'),
        sa.Column('current_period_start', sa.DateTime, nullable=True),
        sa.Column('current_period_end', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # One instance per user, one owner per subdomain
    op.create_table(
        'instances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('subdomain', sa.String(63), nullable=False),
        sa.Column('status', sa.String(20), server_default='provisioning'),
        sa.Column('container_id', sa.String(80), nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', name='uq_instances_user_id'),
        sa.UniqueConstraint('subdomain', name='uq_instances_subdomain'),
    )
    op.create_index('ix_instances_status_created', 'instances', ['status', 'created_at'])

    op.create_table(
        'instance_configs',
        sa.Column(
            'instance_id', sa.String(36),
            sa.ForeignKey('instances.id', ondelete='CASCADE'), primary_key=True,
        ),
        sa.Column('model_preference', sa.String(50), server_default='minimax'),
        sa.Column('onboarding_data', sa.JSON, nullable=True),
        sa.Column('anthropic_key_encrypted', sa.Text, nullable=True),
        sa.Column('openai_key_encrypted', sa.Text, nullable=True),
        sa.Column('telegram_bot_token_encrypted', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'telegram_pairings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('code', sa.String(12), unique=True, nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('instance_id', sa.String(36), nullable=True),
        sa.Column('external_chat_id', sa.String(64), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending'),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('approved_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_telegram_pairings_user_status', 'telegram_pairings', ['user_id', 'status'])
    op.create_index('ix_telegram_pairings_chat_status', 'telegram_pairings', ['external_chat_id', 'status'])


def downgrade() -> None:
    op.drop_index('ix_telegram_pairings_chat_status', table_name='telegram_pairings')
    op.drop_index('ix_telegram_pairings_user_status', table_name='telegram_pairings')
    op.drop_table('telegram_pairings')
    op.drop_table('instance_configs')
    op.drop_index('ix_instances_status_created', table_name='instances')
    op.drop_table('instances')
    op.drop_table('subscriptions')
    op.drop_table('users')
