"""initial_schema

Revision ID: 5b0e2c9d71a4
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates the back office schema:
- locations, users and the per-location offering/price overrides
- catalog: offerings, plans, programs, modules, topics
- class sessions, schedules, discount codes
- registrations, enrollments, payment history, saved cards
- progress rollups and cron job locks
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5b0e2c9d71a4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'role': ('owner', 'admin', 'location_manager', 'teacher', 'parent', 'student'),
    'offeringtype': ('marathon', 'sprint'),
    'weekday': ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday'),
    'sessiontype': ('weekday', 'weekend'),
    'discountusage': ('single', 'multiple'),
    'paymentmethodtype': ('credit-card', 'paypal'),
    'paymentprocessor': ('stripe', 'paypal', 'manual'),
    'paymentstatus': (
        'pending', 'active', 'completed', 'failed', 'refunded', 'suspended', 'cancelled'
    ),
    'paymenthistorystatus': ('pending', 'completed', 'failed', 'refunded'),
}


def _enum(name: str) -> sa.Enum:
    # Several tables share a Postgres type; it is created once up front
    if op.get_bind().dialect.name == 'postgresql':
        return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)
    return sa.Enum(*ENUMS[name], name=name)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _soft_delete() -> list:
    return [
        sa.Column('is_deleted', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    ]


def _capacity() -> list:
    return [
        sa.Column('total_capacity', sa.Integer(), nullable=False),
        sa.Column('available_capacity', sa.Integer(), nullable=False),
        sa.Column('demo_capacity', sa.Integer(), nullable=False),
        sa.Column('available_demo_capacity', sa.Integer(), nullable=False),
    ]


def _index(table: str, *columns: str, unique: bool = False) -> None:
    op.create_index(f"ix_{table}_{'_'.join(columns)}", table, list(columns), unique=unique)


def upgrade() -> None:
    """Create the initial schema."""
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        'locations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False, unique=True),
        sa.Column('street', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('zip_code', sa.String(20), nullable=True),
        sa.Column('country', sa.String(50), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
    )
    _index('locations', 'is_deleted')

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('username', sa.String(50), nullable=True, unique=True),
        sa.Column('hashed_password', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('role', _enum('role'), nullable=False),
        sa.Column('parent_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )
    _index('users', 'parent_id')
    _index('users', 'location_id')
    _index('users', 'is_deleted')

    # ---- Catalog ----
    op.create_table(
        'offerings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('offering_type', _enum('offeringtype'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
    )
    _index('offerings', 'is_deleted')

    op.create_table(
        'plans',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('offering_id', sa.String(36), sa.ForeignKey('offerings.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('stripe_product_id', sa.String(255), nullable=True),
        sa.Column('paypal_product_id', sa.String(255), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )
    _index('plans', 'offering_id')
    _index('plans', 'is_deleted')

    op.create_table(
        'programs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('offering_id', sa.String(36), sa.ForeignKey('offerings.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('estimated_duration', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('sessions_per_week', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('stripe_product_id', sa.String(255), nullable=True),
        sa.Column('paypal_product_id', sa.String(255), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )
    _index('programs', 'offering_id')
    _index('programs', 'is_deleted')

    op.create_table(
        'modules',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'program_id',
            sa.String(36),
            sa.ForeignKey('programs.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('estimated_duration', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    _index('modules', 'program_id')

    op.create_table(
        'topics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'module_id',
            sa.String(36),
            sa.ForeignKey('modules.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('estimated_duration', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    _index('topics', 'module_id')

    # ---- Per-location catalog ----
    op.create_table(
        'location_offerings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'location_id',
            sa.String(36),
            sa.ForeignKey('locations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('offering_id', sa.String(36), sa.ForeignKey('offerings.id'), nullable=False),
        sa.UniqueConstraint('location_id', 'offering_id', name='uq_location_offerings'),
    )
    _index('location_offerings', 'location_id')
    _index('location_offerings', 'offering_id')

    op.create_table(
        'location_price_overrides',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'location_offering_id',
            sa.String(36),
            sa.ForeignKey('location_offerings.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('plan_id', sa.String(36), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('program_id', sa.String(36), sa.ForeignKey('programs.id'), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('tax_percent', sa.Numeric(5, 2), nullable=True),
    )
    _index('location_price_overrides', 'location_offering_id')

    # ---- Sessions and schedules ----
    op.create_table(
        'class_sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('weekday', _enum('weekday'), nullable=False),
        sa.Column('session_type', _enum('sessiontype'), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=True),
        *_capacity(),
        *_timestamps(),
        sa.CheckConstraint(
            'available_capacity >= 0 AND available_capacity <= total_capacity',
            name='ck_class_sessions_regular_pool',
        ),
        sa.CheckConstraint(
            'available_demo_capacity >= 0 AND available_demo_capacity <= demo_capacity',
            name='ck_class_sessions_demo_pool',
        ),
    )
    _index('class_sessions', 'location_id')

    op.create_table(
        'schedules',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('session_id', sa.String(36), sa.ForeignKey('class_sessions.id'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('program_id', sa.String(36), sa.ForeignKey('programs.id'), nullable=True),
        sa.Column('plan_id', sa.String(36), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('created_by_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        *_capacity(),
        *_timestamps(),
        sa.CheckConstraint(
            '(program_id IS NULL) <> (plan_id IS NULL)', name='ck_schedules_program_xor_plan'
        ),
        sa.CheckConstraint('total_capacity >= 1', name='ck_schedules_total_min'),
        sa.CheckConstraint(
            'demo_capacity >= 0 AND demo_capacity <= total_capacity',
            name='ck_schedules_demo_within_total',
        ),
        sa.CheckConstraint(
            'available_capacity >= 0 AND available_capacity <= total_capacity',
            name='ck_schedules_regular_pool',
        ),
        sa.CheckConstraint(
            'available_demo_capacity >= 0 AND available_demo_capacity <= demo_capacity',
            name='ck_schedules_demo_pool',
        ),
        sa.UniqueConstraint(
            'location_id', 'session_id', 'date', 'program_id', 'plan_id',
            name='uq_schedules_slot',
        ),
    )
    for column in ('location_id', 'session_id', 'date', 'program_id', 'plan_id'):
        _index('schedules', column)

    op.create_table(
        'discount_codes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('percent', sa.Integer(), nullable=False),
        sa.Column('usage', _enum('discountusage'), nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('current_uses', sa.Integer(), nullable=False),
        sa.Column('expire_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_by_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('percent >= 1 AND percent <= 100', name='ck_discount_codes_percent'),
        sa.CheckConstraint('current_uses >= 0', name='ck_discount_codes_uses_positive'),
        sa.CheckConstraint(
            'max_uses IS NULL OR current_uses <= max_uses',
            name='ck_discount_codes_uses_within_max',
        ),
    )
    _index('discount_codes', 'created_by_id')
    _index('discount_codes', 'location_id')

    # ---- Registrations and enrollments ----
    op.create_table(
        'registrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('parent_first_name', sa.String(100), nullable=False),
        sa.Column('parent_last_name', sa.String(100), nullable=False),
        sa.Column('parent_email', sa.String(255), nullable=False),
        sa.Column('parent_phone', sa.String(20), nullable=False),
        sa.Column('student_first_name', sa.String(100), nullable=False),
        sa.Column('student_last_name', sa.String(100), nullable=False),
        sa.Column('student_dob', sa.Date(), nullable=False),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('program_id', sa.String(36), sa.ForeignKey('programs.id'), nullable=False),
        sa.Column('offering_id', sa.String(36), sa.ForeignKey('offerings.id'), nullable=False),
        sa.Column('plan_id', sa.String(36), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('schedule_id', sa.String(36), sa.ForeignKey('schedules.id'), nullable=True),
        sa.Column('class_session_ids', sa.JSON(), nullable=False),
        sa.Column('enrollment_date', sa.Date(), nullable=False),
        sa.Column('payment_method', _enum('paymentmethodtype'), nullable=False),
        sa.Column('first_payment_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('monthly_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('discount_code', sa.String(50), nullable=True),
        sa.Column('discount_percent', sa.Integer(), nullable=True),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('admin_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('tax_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('admin_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_amount_due', sa.Numeric(10, 2), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_payment_method_id', sa.String(255), nullable=True),
        sa.Column('paypal_order_id', sa.String(255), nullable=True),
        sa.Column('paypal_subscription_id', sa.String(255), nullable=True),
        sa.Column('is_registration_complete', sa.Boolean(), nullable=False),
        sa.Column('is_reg_linked_with_enrollment', sa.Boolean(), nullable=False),
        sa.Column('is_user_setup', sa.Boolean(), nullable=False),
        sa.Column('enrollment_id', sa.String(36), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    _index('registrations', 'parent_email')
    _index('registrations', 'location_id')
    _index('registrations', 'expires_at')

    op.create_table(
        'enrollments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('parent_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('program_id', sa.String(36), sa.ForeignKey('programs.id'), nullable=False),
        sa.Column('plan_id', sa.String(36), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('schedule_id', sa.String(36), sa.ForeignKey('schedules.id'), nullable=True),
        sa.Column(
            'registration_id', sa.String(36), sa.ForeignKey('registrations.id'), nullable=True
        ),
        sa.Column('offering_type', _enum('offeringtype'), nullable=False),
        sa.Column('payment_method', _enum('paymentmethodtype'), nullable=False),
        sa.Column('payment_processor', _enum('paymentprocessor'), nullable=True),
        sa.Column('payment_status', _enum('paymentstatus'), nullable=False),
        sa.Column('enrollment_date', sa.Date(), nullable=False),
        sa.Column('base_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount_code', sa.String(50), nullable=True),
        sa.Column('discount_percent', sa.Integer(), nullable=True),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('admin_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('monthly_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('subscription_id', sa.String(255), nullable=True),
        sa.Column('next_payment_due', sa.DateTime(timezone=True), nullable=True),
        sa.Column('monthly_payment_received', sa.Boolean(), nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_transaction_id', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=True),
        *_timestamps(),
    )
    for column in (
        'student_id', 'parent_id', 'program_id', 'schedule_id',
        'payment_status', 'next_payment_due', 'location_id',
    ):
        _index('enrollments', column)

    op.create_table(
        'enrollment_class_sessions',
        sa.Column(
            'enrollment_id',
            sa.String(36),
            sa.ForeignKey('enrollments.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column(
            'class_session_id',
            sa.String(36),
            sa.ForeignKey('class_sessions.id'),
            primary_key=True,
        ),
    )

    op.create_table(
        'payment_history',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'enrollment_id',
            sa.String(36),
            sa.ForeignKey('enrollments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', _enum('paymenthistorystatus'), nullable=False),
        sa.Column('processor', _enum('paymentprocessor'), nullable=False),
        sa.Column('transaction_id', sa.String(255), nullable=True),
    )
    _index('payment_history', 'enrollment_id')

    op.create_table(
        'payment_methods',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'user_id',
            sa.String(36),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('stripe_payment_method_id', sa.String(255), nullable=False, unique=True),
        sa.Column('card_brand', sa.String(50), nullable=True),
        sa.Column('last4', sa.String(4), nullable=True),
        sa.Column('exp_month', sa.Integer(), nullable=True),
        sa.Column('exp_year', sa.Integer(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    _index('payment_methods', 'user_id')

    # ---- Progress ----
    op.create_table(
        'completed_topics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column(
            'topic_id',
            sa.String(36),
            sa.ForeignKey('topics.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'module_id',
            sa.String(36),
            sa.ForeignKey('modules.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('score', sa.Numeric(5, 2), nullable=True),
        sa.Column(
            'completed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint('student_id', 'topic_id', name='uq_completed_topics_student_topic'),
    )
    _index('completed_topics', 'student_id')
    _index('completed_topics', 'module_id')

    op.create_table(
        'module_progress',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column(
            'module_id',
            sa.String(36),
            sa.ForeignKey('modules.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('program_id', sa.String(36), sa.ForeignKey('programs.id'), nullable=False),
        sa.Column('enrollment_id', sa.String(36), sa.ForeignKey('enrollments.id'), nullable=True),
        sa.Column('completed_topics', sa.Integer(), nullable=False),
        sa.Column('total_topics', sa.Integer(), nullable=False),
        sa.Column('completion_percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('marks', sa.Numeric(5, 2), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('student_id', 'module_id', name='uq_module_progress_student_module'),
    )
    _index('module_progress', 'student_id')
    _index('module_progress', 'program_id')
    _index('module_progress', 'enrollment_id')

    op.create_table(
        'program_progress',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('program_id', sa.String(36), sa.ForeignKey('programs.id'), nullable=False),
        sa.Column('enrollment_id', sa.String(36), sa.ForeignKey('enrollments.id'), nullable=True),
        sa.Column('completed_modules', sa.Integer(), nullable=False),
        sa.Column('total_modules', sa.Integer(), nullable=False),
        sa.Column('completion_percentage', sa.Numeric(5, 2), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            'student_id', 'program_id', name='uq_program_progress_student_program'
        ),
    )
    _index('program_progress', 'student_id')
    _index('program_progress', 'enrollment_id')

    op.create_table(
        'job_locks',
        sa.Column('name', sa.String(100), primary_key=True),
        sa.Column('holder', sa.String(36), nullable=True),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Drop every table of the initial schema."""
    for table in (
        'job_locks',
        'program_progress',
        'module_progress',
        'completed_topics',
        'payment_methods',
        'payment_history',
        'enrollment_class_sessions',
        'enrollments',
        'registrations',
        'discount_codes',
        'schedules',
        'class_sessions',
        'location_price_overrides',
        'location_offerings',
        'topics',
        'modules',
        'programs',
        'plans',
        'offerings',
        'users',
        'locations',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name in ENUMS:
            postgresql.ENUM(name=name).drop(bind, checkfirst=True)
