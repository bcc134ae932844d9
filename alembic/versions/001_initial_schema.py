"""initial schema - webhooks and delivery attempts

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create webhooks table (status as VARCHAR, timestamps as epoch seconds)
    op.create_table(
        'webhooks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('destination_url', sa.Text(), nullable=False),
        sa.Column('event_type', sa.String(255), nullable=False),
        sa.Column('created_at', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_retry_at', sa.Integer(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
    )
    op.create_index('idx_webhooks_status', 'webhooks', ['status'])

    # Create webhook_deliveries table (append-only attempt log)
    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('webhook_id', sa.String(36), nullable=False, index=True),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('response_code', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempted_at', sa.Integer(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('webhook_deliveries')
    op.drop_index('idx_webhooks_status', table_name='webhooks')
    op.drop_table('webhooks')
