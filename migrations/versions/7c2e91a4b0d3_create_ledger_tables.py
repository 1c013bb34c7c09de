"""Create purchase_events and user_points tables

Revision ID: 7c2e91a4b0d3
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c2e91a4b0d3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('purchase_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('external_session_id', sa.String(length=255), nullable=False),
        sa.Column('customer_id', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.String(length=100), nullable=True),
        sa.Column('seller_id', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('points_awarded', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_session_id')
    )
    # Dashboard lookups: by customer, by status, by seller
    op.create_index('ix_purchase_events_customer_id', 'purchase_events', ['customer_id'])
    op.create_index('ix_purchase_events_status', 'purchase_events', ['status'])
    op.create_index('ix_purchase_events_seller_id', 'purchase_events', ['seller_id'])

    op.create_table('user_points',
        sa.Column('customer_id', sa.String(length=255), nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('customer_id'),
        sa.CheckConstraint('total_points >= 0', name='ck_user_points_non_negative')
    )


def downgrade():
    op.drop_table('user_points')
    op.drop_index('ix_purchase_events_seller_id', table_name='purchase_events')
    op.drop_index('ix_purchase_events_status', table_name='purchase_events')
    op.drop_index('ix_purchase_events_customer_id', table_name='purchase_events')
    op.drop_table('purchase_events')
