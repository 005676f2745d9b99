"""Initial migration

Revision ID: 001
Revises:
Create Date: 2026-01-05 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


day_of_week = sa.Enum(
    'MONDAY', 'TUESDAY', 'WEDNESDAY', 'THURSDAY', 'FRIDAY', 'SATURDAY', 'SUNDAY',
    name='dayofweek'
)
booking_status = sa.Enum(
    'PENDING_PAYMENT', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'EXPIRED',
    name='bookingstatus'
)
payment_status = sa.Enum('PENDING', 'PAID', 'FAILED', 'EXPIRED', 'CANCELLED', name='paymentstatus')
consultation_type = sa.Enum('ONLINE', 'OFFLINE', name='consultationtype')
payment_session_status = sa.Enum(
    'OPEN', 'PAID', 'FAILED', 'EXPIRED', 'CANCELLED', 'ERROR',
    name='paymentsessionstatus'
)


def upgrade() -> None:
    # Doctors (maintained by the admin service)
    op.create_table(
        'providers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('specialization', sa.String(length=100), nullable=False),
        sa.Column('practice_address', sa.Text(), nullable=True),
        sa.Column('base_hourly_rate', sa.Integer(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'schedule_slots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('day_of_week', day_of_week, nullable=False),
        sa.Column('time_slot', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'uq_schedule_slots_active_time', 'schedule_slots',
        ['provider_id', 'day_of_week', 'time_slot'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active')
    )

    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('schedule_slot_id', sa.Uuid(), nullable=True),
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('consultation_type', consultation_type, nullable=False),
        sa.Column('consultation_fee', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', booking_status, nullable=False),
        sa.Column('payment_status', payment_status, nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('expiry_finalized', sa.Boolean(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
        sa.ForeignKeyConstraint(['schedule_slot_id'], ['schedule_slots.id']),
        sa.CheckConstraint('start_time < end_time', name='check_booking_time_order'),
        sa.CheckConstraint('consultation_fee >= 0', name='check_booking_fee'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_bookings_user_id', 'bookings', ['user_id'], unique=False)
    op.create_index('ix_bookings_booking_date', 'bookings', ['booking_date'], unique=False)
    # One booking holds a (doctor, date, time) until it releases the slot
    op.create_index(
        'uq_bookings_slot_hold', 'bookings',
        ['provider_id', 'booking_date', 'start_time'],
        unique=True,
        postgresql_where=sa.text('released_at IS NULL'),
        sqlite_where=sa.text('released_at IS NULL')
    )

    op.create_table(
        'booking_slot_holds',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('slot_time', sa.Time(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_booking_slot_holds_booking_id', 'booking_slot_holds', ['booking_id'], unique=False)
    # Every slot start covered by a multi-slot booking
    op.create_index(
        'uq_booking_slot_holds_time', 'booking_slot_holds',
        ['provider_id', 'booking_date', 'slot_time'],
        unique=True
    )

    op.create_table(
        'payment_sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.String(length=80), nullable=False),
        sa.Column('attempt', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('payment_type', sa.String(length=30), nullable=False),
        sa.Column('status', payment_session_status, nullable=False),
        sa.Column('snap_token', sa.String(length=255), nullable=True),
        sa.Column('snap_redirect_url', sa.String(length=500), nullable=True),
        sa.Column('expiry_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('late_payment', sa.Boolean(), nullable=False),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_payment_sessions_booking_id', 'payment_sessions', ['booking_id'], unique=False)
    op.create_index('ix_payment_sessions_order_id', 'payment_sessions', ['order_id'], unique=True)
    op.create_index(
        'uq_payment_sessions_open', 'payment_sessions',
        ['booking_id'],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
        sqlite_where=sa.text("status = 'OPEN'")
    )


def downgrade() -> None:
    # Drop all tables in reverse order of creation
    op.drop_table('payment_sessions')
    op.drop_table('booking_slot_holds')
    op.drop_table('bookings')
    op.drop_table('schedule_slots')
    op.drop_table('providers')

    bind = op.get_bind()
    for enum_type in (payment_session_status, consultation_type, payment_status, booking_status, day_of_week):
        enum_type.drop(bind, checkfirst=True)
