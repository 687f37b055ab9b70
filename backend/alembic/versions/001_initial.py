"""Initial migration - users, Strava credentials, activities, sync state

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
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'strava_tokens',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, unique=True),
        sa.Column('strava_athlete_id', sa.BigInteger(), nullable=False),
        sa.Column('athlete_firstname', sa.String(100), nullable=True),
        sa.Column('athlete_lastname', sa.String(100), nullable=True),
        sa.Column('athlete_profile', sa.String(500), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('token_type', sa.String(20), nullable=False, server_default='Bearer'),
        sa.Column('expires_at', sa.Integer(), nullable=False),
        sa.Column('scope', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'ix_strava_tokens_strava_athlete_id', 'strava_tokens', ['strava_athlete_id'], unique=True
    )

    op.create_table(
        'strava_activities',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('strava_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('sport_type', sa.String(50), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('start_date_local', sa.DateTime(), nullable=True),
        sa.Column('timezone', sa.String(100), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=False),
        sa.Column('moving_time_s', sa.Integer(), nullable=False),
        sa.Column('elapsed_time_s', sa.Integer(), nullable=False),
        sa.Column('elevation_gain_m', sa.Float(), nullable=True),
        sa.Column('avg_speed_mps', sa.Float(), nullable=True),
        sa.Column('max_speed_mps', sa.Float(), nullable=True),
        sa.Column('avg_heartrate', sa.Float(), nullable=True),
        sa.Column('max_heartrate', sa.Float(), nullable=True),
        sa.Column('has_heartrate', sa.Boolean(), nullable=True),
        sa.Column('avg_watts', sa.Float(), nullable=True),
        sa.Column('max_watts', sa.Float(), nullable=True),
        sa.Column('weighted_avg_watts', sa.Float(), nullable=True),
        sa.Column('kilojoules', sa.Float(), nullable=True),
        sa.Column('has_power', sa.Boolean(), nullable=True),
        sa.Column('avg_cadence', sa.Float(), nullable=True),
        sa.Column('trainer', sa.Boolean(), nullable=True),
        sa.Column('commute', sa.Boolean(), nullable=True),
        sa.Column('manual', sa.Boolean(), nullable=True),
        sa.Column('average_pace_s_per_km', sa.Float(), nullable=True),
        sa.Column('elevation_per_km', sa.Float(), nullable=True),
        sa.Column('week_number', sa.Integer(), nullable=True),
        sa.Column('month_number', sa.Integer(), nullable=True),
        sa.Column('year_number', sa.Integer(), nullable=True),
        sa.Column('day_of_week', sa.Integer(), nullable=True),
        sa.Column('training_stress_score', sa.Float(), nullable=True),
        sa.Column('intensity_factor', sa.Float(), nullable=True),
        sa.Column('training_load_computed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('user_id', 'strava_id', name='uq_strava_activities_user_strava'),
    )
    op.create_index('ix_strava_activities_user_id', 'strava_activities', ['user_id'])
    op.create_index('ix_strava_activities_strava_id', 'strava_activities', ['strava_id'])
    op.create_index('ix_strava_activities_start_date', 'strava_activities', ['start_date'])

    op.create_table(
        'sync_state',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, unique=True),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_requests_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sync_date', sa.Date(), nullable=True),
        sa.Column('last_activity_sync', sa.DateTime(), nullable=True),
        sa.Column('consecutive_errors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error_code', sa.String(50), nullable=True),
        sa.Column('last_error_message', sa.String(500), nullable=True),
        sa.Column('last_error_at', sa.DateTime(), nullable=True),
        sa.Column('total_activities_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('sync_state')
    op.drop_index('ix_strava_activities_start_date', table_name='strava_activities')
    op.drop_index('ix_strava_activities_strava_id', table_name='strava_activities')
    op.drop_index('ix_strava_activities_user_id', table_name='strava_activities')
    op.drop_table('strava_activities')
    op.drop_index('ix_strava_tokens_strava_athlete_id', table_name='strava_tokens')
    op.drop_table('strava_tokens')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
