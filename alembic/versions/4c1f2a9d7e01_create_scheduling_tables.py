"""create scheduling tables

Revision ID: 4c1f2a9d7e01
Revises:
Create Date: 2026-10-18 09:12:44.502311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c1f2a9d7e01'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    # 1. Teams and members
    op.create_table(
        'teams',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'team_members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(254), nullable=False, unique=True),
        sa.Column('google_calendar_id', sa.String(254), nullable=False),
        sa.Column('google_oauth_refresh_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('google_oauth_connected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('google_oauth_revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_booked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_team_members_active_cursor', 'team_members', ['is_active', 'last_booked_at'])

    op.create_table(
        'team_memberships',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('team_id', sa.Uuid(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('team_member_id', sa.Uuid(), sa.ForeignKey('team_members.id'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('in_round_robin', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('team_id', 'team_member_id', name='uq_team_memberships_team_member'),
    )

    # 2. Weekly availability
    op.create_table(
        'availability_rules',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('team_member_id', sa.Uuid(), sa.ForeignKey('team_members.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_availability_rules_day_of_week'),
    )
    op.create_index('ix_availability_rules_member_day', 'availability_rules', ['team_member_id', 'day_of_week'])

    # 3. Event types
    op.create_table(
        'event_types',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('team_id', sa.Uuid(), sa.ForeignKey('teams.id'), nullable=True),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('before_buffer_mins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('after_buffer_mins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_notice_hours', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_daily_bookings', sa.Integer(), nullable=True),
        sa.Column('max_advance_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('team_id', 'slug', name='uq_event_types_team_slug'),
    )

    # 4. Bookings
    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_type_id', sa.Uuid(), sa.ForeignKey('event_types.id'), nullable=False),
        sa.Column('team_member_id', sa.Uuid(), sa.ForeignKey('team_members.id'), nullable=False),
        sa.Column('invitee_name', sa.String(100), nullable=False),
        sa.Column('invitee_email', sa.String(254), nullable=False),
        sa.Column('invitee_phone', sa.String(20), nullable=True),
        sa.Column('invitee_notes', sa.Text(), nullable=True),
        sa.Column('custom_answers', sa.JSON(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('calendar_event_id', sa.String(1024), nullable=True),
        sa.Column('join_link', sa.String(500), nullable=True),
        sa.Column('manage_token', sa.String(128), nullable=False, unique=True),
        sa.Column('reminder_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('confirmed', 'cancelled', 'completed')", name='ck_bookings_status'),
        sa.CheckConstraint('end_time > start_time', name='ck_bookings_time_order'),
    )
    op.create_index('ix_bookings_member_status_start', 'bookings', ['team_member_id', 'status', 'start_time'])
    op.create_index('ix_bookings_event_type_status_start', 'bookings', ['event_type_id', 'status', 'start_time'])

    # 5. Outbound webhooks
    op.create_table(
        'webhook_endpoints',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('url', sa.String(500), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('enabled_events', sa.JSON(), nullable=True),
        sa.Column('secret', sa.String(128), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('webhook_endpoints')
    op.drop_index('ix_bookings_event_type_status_start', table_name='bookings')
    op.drop_index('ix_bookings_member_status_start', table_name='bookings')
    op.drop_table('bookings')
    op.drop_table('event_types')
    op.drop_index('ix_availability_rules_member_day', table_name='availability_rules')
    op.drop_table('availability_rules')
    op.drop_table('team_memberships')
    op.drop_index('ix_team_members_active_cursor', table_name='team_members')
    op.drop_table('team_members')
    op.drop_table('teams')
