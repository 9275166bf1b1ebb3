"""initial_schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Enumerated columns are plain strings, validated in the application layer
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='employee'),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='active'),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('territory', sa.String(length=100), nullable=True),
        sa.Column('manager', sa.String(length=100), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'leaderboards',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False, server_default='employee'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settings', sa.Text(), nullable=True),
        sa.Column('rankings_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rankings_calculated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'metrics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leaderboard_id', sa.Integer(), sa.ForeignKey('leaderboards.id', ondelete='SET NULL'), nullable=True),
        sa.Column('metric_type', sa.String(length=50), nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('weight', sa.Numeric(5, 2), nullable=False, server_default='1.00'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('source', sa.String(length=100), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_metrics_user_id', 'metrics', ['user_id'])
    op.create_index('ix_metrics_leaderboard_id', 'metrics', ['leaderboard_id'])
    op.create_index('ix_metric_leaderboard_user', 'metrics', ['leaderboard_id', 'user_id'])
    op.create_index('ix_metric_user_type', 'metrics', ['user_id', 'metric_type'])
    op.create_index('ix_metric_recorded_at', 'metrics', ['recorded_at'])

    op.create_table(
        'leaderboard_rankings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('leaderboard_id', sa.Integer(), sa.ForeignKey('leaderboards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('score', sa.Numeric(12, 2), nullable=False),
        sa.Column('previous_rank', sa.Integer(), nullable=True),
        sa.Column('rank_change', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('calculated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    # One row per (leaderboard, user); recompute upserts against this
    op.create_index('ix_leaderboard_ranking_unique', 'leaderboard_rankings', ['leaderboard_id', 'user_id'], unique=True)
    op.create_index('ix_leaderboard_ranking_rank', 'leaderboard_rankings', ['leaderboard_id', 'rank'])

    op.create_table(
        'achievements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False, server_default='milestone'),
        sa.Column('icon', sa.String(length=100), nullable=True),
        sa.Column('points_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('criteria', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_achievement_active', 'achievements', ['is_active'])

    op.create_table(
        'user_achievements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('achievement_id', sa.Integer(), sa.ForeignKey('achievements.id', ondelete='CASCADE'), nullable=False),
        sa.Column('earned_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    # Grants are at most once per (user, achievement)
    op.create_index('ix_user_achievement_unique', 'user_achievements', ['user_id', 'achievement_id'], unique=True)

    op.create_table(
        'sales_goals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leaderboard_id', sa.Integer(), sa.ForeignKey('leaderboards.id', ondelete='SET NULL'), nullable=True),
        sa.Column('metric_type', sa.String(length=50), nullable=False),
        sa.Column('target_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('period', sa.String(length=50), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_sales_goals_user_id', 'sales_goals', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_sales_goals_user_id', table_name='sales_goals')
    op.drop_table('sales_goals')

    op.drop_index('ix_user_achievement_unique', table_name='user_achievements')
    op.drop_table('user_achievements')

    op.drop_index('ix_achievement_active', table_name='achievements')
    op.drop_table('achievements')

    op.drop_index('ix_leaderboard_ranking_rank', table_name='leaderboard_rankings')
    op.drop_index('ix_leaderboard_ranking_unique', table_name='leaderboard_rankings')
    op.drop_table('leaderboard_rankings')

    op.drop_index('ix_metric_recorded_at', table_name='metrics')
    op.drop_index('ix_metric_user_type', table_name='metrics')
    op.drop_index('ix_metric_leaderboard_user', table_name='metrics')
    op.drop_index('ix_metrics_leaderboard_id', table_name='metrics')
    op.drop_index('ix_metrics_user_id', table_name='metrics')
    op.drop_table('metrics')

    op.drop_table('leaderboards')

    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
