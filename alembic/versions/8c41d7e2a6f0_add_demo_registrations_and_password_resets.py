"""add_demo_registrations_and_password_resets

Revision ID: 8c41d7e2a6f0
Revises: 5b0e2c9d71a4
Create Date: 2026-10-18 15:30:00.000000

- demo_registrations: free demo class bookings holding a demo seat
- password_resets: mailed reset codes and their one-time tokens
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c41d7e2a6f0'
down_revision: Union[str, Sequence[str], None] = '5b0e2c9d71a4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add demo registrations and password resets."""
    op.create_table(
        'demo_registrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('parent_first_name', sa.String(100), nullable=False),
        sa.Column('parent_last_name', sa.String(100), nullable=False),
        sa.Column('parent_email', sa.String(255), nullable=False),
        sa.Column('parent_phone', sa.String(20), nullable=False),
        sa.Column('student_first_name', sa.String(100), nullable=False),
        sa.Column('student_last_name', sa.String(100), nullable=False),
        sa.Column('student_dob', sa.Date(), nullable=False),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column(
            'class_session_id', sa.String(36), sa.ForeignKey('class_sessions.id'), nullable=True
        ),
        sa.Column('schedule_id', sa.String(36), sa.ForeignKey('schedules.id'), nullable=True),
        sa.Column('demo_class_date', sa.Date(), nullable=False),
        sa.Column(
            'status',
            sa.Enum('pending', 'confirmed', 'completed', 'cancelled', name='demostatus'),
            nullable=False,
        ),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('attendance_marked', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_demo_registrations_parent_email', 'demo_registrations', ['parent_email'])
    op.create_index('ix_demo_registrations_location_id', 'demo_registrations', ['location_id'])
    op.create_index('ix_demo_registrations_demo_class_date', 'demo_registrations', ['demo_class_date'])
    op.create_index('ix_demo_registrations_status', 'demo_registrations', ['status'])

    op.create_table(
        'password_resets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'user_id',
            sa.String(36),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('code', sa.String(6), nullable=False),
        sa.Column('token', sa.String(255), nullable=False),
        sa.Column('failed_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_password_resets_user_id', 'password_resets', ['user_id'])
    op.create_index('ix_password_resets_token', 'password_resets', ['token'], unique=True)


def downgrade() -> None:
    """Drop demo registrations and password resets."""
    op.drop_table('password_resets')
    op.drop_table('demo_registrations')
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("DROP TYPE IF EXISTS demostatus")
