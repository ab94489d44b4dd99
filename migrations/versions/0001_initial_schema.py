"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


booking_status = postgresql.ENUM('pending', 'confirmed', 'cancelled', 'completed', name='booking_status', create_type=False)
payment_status = postgresql.ENUM('unpaid', 'paid', 'refunded', name='payment_status', create_type=False)
booking_actor = postgresql.ENUM('business', 'customer', 'system', name='booking_actor', create_type=False)
intent_kind = postgresql.ENUM(
    'new_booking', 'booking_confirmed', 'booking_cancelled', 'booking_rescheduled',
    'booking_completed', 'new_review', 'booking_reminder',
    name='intent_kind', create_type=False,
)
delivery_status = postgresql.ENUM('pending', 'sent', 'failed', name='notification_delivery_status', create_type=False)

ENUMS = (booking_status, payment_status, booking_actor, intent_kind, delivery_status)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'staff',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'services',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.CheckConstraint('duration_minutes > 0', name='service_positive_duration'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_services_name', 'services', ['name'])

    op.create_table(
        'shift_templates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('staff_id', sa.Uuid(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.CheckConstraint('day_of_week BETWEEN 0 AND 6', name='shift_day_of_week_range'),
        sa.CheckConstraint('start_time < end_time', name='shift_start_before_end'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_shift_templates_staff_id', 'shift_templates', ['staff_id'])

    op.create_table(
        'time_off_periods',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('staff_id', sa.Uuid(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('all_day', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('start_date <= end_date', name='time_off_start_before_end'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_time_off_periods_staff_id', 'time_off_periods', ['staff_id'])

    op.create_table(
        'availability_overrides',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('staff_id', sa.Uuid(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.CheckConstraint(
            'start_time IS NULL OR end_time IS NULL OR start_time < end_time',
            name='override_start_before_end',
        ),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('staff_id', 'date', name='uq_availability_override_staff_date'),
    )
    op.create_index('ix_availability_overrides_staff_id', 'availability_overrides', ['staff_id'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('service_id', sa.Uuid(), nullable=False),
        sa.Column('staff_id', sa.Uuid(), nullable=True),
        sa.Column('client_name', sa.String(length=255), nullable=False),
        sa.Column('client_email', sa.String(length=320), nullable=False),
        sa.Column('client_phone', sa.String(length=32), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', booking_status, nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_status', payment_status, nullable=False),
        sa.Column('source', sa.String(length=50), nullable=False),
        sa.Column('notes', sa.String(length=1000), nullable=True),
        sa.Column('reschedule_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_by', booking_actor, nullable=False),
        sa.Column('cancelled_by', booking_actor, nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('start_time < end_time', name='booking_start_before_end'),
        sa.CheckConstraint('reschedule_count BETWEEN 0 AND 1', name='booking_reschedule_once'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_bookings_service_id', 'bookings', ['service_id'])
    op.create_index('ix_bookings_staff_id', 'bookings', ['staff_id'])
    op.create_index('ix_bookings_client_email', 'bookings', ['client_email'])
    op.create_index('ix_bookings_start_time', 'bookings', ['start_time'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.create_index('ix_bookings_staff_start', 'bookings', ['staff_id', 'start_time'])

    # One active booking per client per service
    op.create_index(
        'uq_bookings_active_client_service',
        'bookings',
        ['service_id', 'client_email'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'confirmed')"),
    )

    # No overlapping active bookings for one staff member
    op.execute(
        "ALTER TABLE bookings ADD CONSTRAINT bookings_no_staff_overlap "
        "EXCLUDE USING gist (staff_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (staff_id IS NOT NULL AND status IN ('pending', 'confirmed'))"
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=True),
        sa.Column('kind', intent_kind, nullable=False),
        sa.Column('audiences', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('delivery_status', delivery_status, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_booking_id', 'notifications', ['booking_id'])
    op.create_index('ix_notifications_kind', 'notifications', ['kind'])
    op.create_index('ix_notifications_delivery_status', 'notifications', ['delivery_status'])
    op.create_index('ix_notifications_expires_at', 'notifications', ['expires_at'])

    op.create_table(
        'reviews',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='review_rating_range'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reviews_booking_id', 'reviews', ['booking_id'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('reviews')
    op.drop_table('notifications')
    op.drop_table('bookings')
    op.drop_table('availability_overrides')
    op.drop_table('time_off_periods')
    op.drop_table('shift_templates')
    op.drop_table('services')
    op.drop_table('staff')

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
