"""Initial booking schema

Revision ID: 0001
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create users table
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('first_name', sa.String(length=128), nullable=False),
        sa.Column('last_name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('length(email) > 0', name='ck_user_email_not_empty'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=False)

    # Create tours table
    op.create_table('tours',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('base_price_amount', sa.Integer(), nullable=False),
        sa.Column('price_currency', sa.String(length=3), nullable=False),
        sa.Column('max_participants', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('base_price_amount >= 0', name='ck_tour_base_price_non_negative'),
        sa.CheckConstraint('length(price_currency) = 3', name='ck_tour_price_currency_length'),
        sa.CheckConstraint('max_participants > 0', name='ck_tour_max_participants_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )
    op.create_index(op.f('ix_tours_name'), 'tours', ['name'], unique=False)
    op.create_index(op.f('ix_tours_slug'), 'tours', ['slug'], unique=False)
    op.create_index(op.f('ix_tours_status'), 'tours', ['status'], unique=False)

    # Create tour_instances table
    op.create_table('tour_instances',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('start_datetime', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_datetime', sa.DateTime(timezone=True), nullable=False),
        sa.Column('capacity_max', sa.Integer(), nullable=False),
        sa.Column('capacity_booked', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('price_override_amount', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('capacity_max >= 0', name='ck_instance_capacity_max_non_negative'),
        sa.CheckConstraint('capacity_booked >= 0', name='ck_instance_capacity_booked_non_negative'),
        sa.CheckConstraint('capacity_booked <= capacity_max', name='ck_instance_capacity_booked_lte_max'),
        sa.CheckConstraint('end_datetime > start_datetime', name='ck_instance_end_after_start'),
        sa.CheckConstraint(
            'price_override_amount IS NULL OR price_override_amount >= 0',
            name='ck_instance_price_override_non_negative'
        ),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tour_instances_start_datetime'), 'tour_instances', ['start_datetime'], unique=False)
    op.create_index(op.f('ix_tour_instances_status'), 'tour_instances', ['status'], unique=False)
    op.create_index(op.f('ix_tour_instances_tour_id'), 'tour_instances', ['tour_id'], unique=False)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reference', sa.String(length=16), nullable=False),
        sa.Column('tour_instance_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('lead_participant_name', sa.String(length=255), nullable=False),
        sa.Column('lead_participant_email', sa.String(length=320), nullable=False),
        sa.Column('lead_participant_phone', sa.String(length=64), nullable=False),
        sa.Column('participant_count', sa.Integer(), nullable=False),
        sa.Column('special_requests', sa.Text(), nullable=True),
        sa.Column('dietary_restrictions', sa.Text(), nullable=True),
        sa.Column('unit_price_amount', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('booking_status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.String(length=128), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('participant_count >= 1', name='ck_booking_participants_positive'),
        sa.CheckConstraint('participant_count <= 50', name='ck_booking_participants_max'),
        sa.CheckConstraint('total_amount >= 0', name='ck_booking_total_non_negative'),
        sa.CheckConstraint('length(reference) > 0', name='ck_booking_reference_not_empty'),
        sa.CheckConstraint('refund_amount IS NULL OR refund_amount >= 0', name='ck_booking_refund_non_negative'),
        sa.ForeignKeyConstraint(['customer_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['tour_instance_id'], ['tour_instances.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference')
    )
    op.create_index(op.f('ix_bookings_booking_status'), 'bookings', ['booking_status'], unique=False)
    op.create_index(op.f('ix_bookings_customer_id'), 'bookings', ['customer_id'], unique=False)
    op.create_index(op.f('ix_bookings_expires_at'), 'bookings', ['expires_at'], unique=False)
    op.create_index(op.f('ix_bookings_lead_participant_email'), 'bookings', ['lead_participant_email'], unique=False)
    op.create_index(op.f('ix_bookings_reference'), 'bookings', ['reference'], unique=False)
    op.create_index(op.f('ix_bookings_tour_instance_id'), 'bookings', ['tour_instance_id'], unique=False)

    # The expiry sweep scans pending bookings by deadline
    op.create_index(
        'ix_bookings_pending_expiry',
        'bookings',
        ['booking_status', 'expires_at'],
        unique=False
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index('ix_bookings_pending_expiry', table_name='bookings')
    op.drop_index(op.f('ix_bookings_tour_instance_id'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_reference'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_lead_participant_email'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_expires_at'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_customer_id'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_booking_status'), table_name='bookings')
    op.drop_table('bookings')

    op.drop_index(op.f('ix_tour_instances_tour_id'), table_name='tour_instances')
    op.drop_index(op.f('ix_tour_instances_status'), table_name='tour_instances')
    op.drop_index(op.f('ix_tour_instances_start_datetime'), table_name='tour_instances')
    op.drop_table('tour_instances')

    op.drop_index(op.f('ix_tours_status'), table_name='tours')
    op.drop_index(op.f('ix_tours_slug'), table_name='tours')
    op.drop_index(op.f('ix_tours_name'), table_name='tours')
    op.drop_table('tours')

    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
