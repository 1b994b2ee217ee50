"""Create partner billing tables

Revision ID: create_billing_tables_001
Revises:
Create Date: 2026-10-18

Tables: partners, retreat_bookings, invoices, invoice_line_items, notifications.

Idempotency constraints:
- invoices (partner_id, billing_cycle) unique: one invoice per partner per cycle
- invoice_line_items.booking_id unique: a booking is billed at most once
- invoices.paypal_invoice_id unique
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_billing_tables_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==================== partners ====================
    op.create_table(
        'partners',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),

        # Commission configuration
        sa.Column('commission_mode', sa.String(20), nullable=False, server_default='percentage'),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=True),
        sa.Column('flat_rate_amount', sa.Numeric(12, 2), nullable=True),

        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # ==================== retreat_bookings ====================
    op.create_table(
        'retreat_bookings',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('partner_id', sa.Integer, sa.ForeignKey('partners.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('guest_name', sa.String(255), nullable=False),
        sa.Column('retreat_date', sa.Date, nullable=False),

        # Revenue
        sa.Column('expected_net_revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('final_net_revenue', sa.Numeric(12, 2), nullable=True),

        # Status
        sa.Column('status', sa.String(20), nullable=False, server_default='scheduled'),
        sa.Column('invoiced', sa.Boolean, nullable=False, server_default=sa.false()),

        # Verification
        sa.Column('verification_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rescheduled_date', sa.Date, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'ix_retreat_bookings_billing',
        'retreat_bookings',
        ['partner_id', 'status', 'invoiced', 'retreat_date'],
    )

    # ==================== invoices ====================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('partner_id', sa.Integer, sa.ForeignKey('partners.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('billing_cycle', sa.Date, nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('due_date', sa.Date, nullable=False),

        # Gateway reference
        sa.Column('paypal_invoice_id', sa.String(100), nullable=True, unique=True),
        sa.Column('paypal_invoice_url', sa.String(500), nullable=True),

        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.UniqueConstraint('partner_id', 'billing_cycle', name='uq_invoice_partner_cycle'),
    )
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    # ==================== invoice_line_items ====================
    op.create_table(
        'invoice_line_items',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('invoice_id', sa.Integer, sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('booking_id', sa.Integer, sa.ForeignKey('retreat_bookings.id', ondelete='RESTRICT'), nullable=False, unique=True),
        sa.Column('guest_name', sa.String(255), nullable=False),
        sa.Column('retreat_date', sa.Date, nullable=False),
        sa.Column('revenue', sa.Numeric(12, 2), nullable=False),

        # Commission snapshot at billing time
        sa.Column('commission_mode', sa.String(20), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=True),
        sa.Column('flat_rate_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('line_item_amount', sa.Numeric(12, 2), nullable=False),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # ==================== notifications ====================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('notification_type', sa.String(50), nullable=False, index=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('partner_id', sa.Integer, sa.ForeignKey('partners.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('booking_id', sa.Integer, sa.ForeignKey('retreat_bookings.id', ondelete='SET NULL'), nullable=True),
        sa.Column('invoice_id', sa.Integer, sa.ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('is_read', sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_type_invoice', 'notifications', ['notification_type', 'invoice_id'])


def downgrade() -> None:
    op.drop_index('ix_notifications_type_invoice', table_name='notifications')
    op.drop_table('notifications')
    op.drop_table('invoice_line_items')
    op.drop_index('ix_invoices_status', table_name='invoices')
    op.drop_table('invoices')
    op.drop_index('ix_retreat_bookings_billing', table_name='retreat_bookings')
    op.drop_table('retreat_bookings')
    op.drop_table('partners')
