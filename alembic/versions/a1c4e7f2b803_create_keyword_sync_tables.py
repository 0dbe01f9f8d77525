"""Create campaign, keyword, traffic and sync bookkeeping tables

Revision ID: a1c4e7f2b803
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f2b803'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Campaign side (read by the sync engine)
    op.create_table(
        'google_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expiry', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_google_accounts_id', 'google_accounts', ['id'])
    op.create_index('ix_google_accounts_email', 'google_accounts', ['email'])

    op.create_table(
        'campaigns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('site_url', sa.String(), nullable=False),
        sa.Column('keywords', sa.Text(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('google_account_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['google_account_id'], ['google_accounts.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_campaigns_id', 'campaigns', ['id'])
    op.create_index('ix_campaigns_site_url', 'campaigns', ['site_url'])
    op.create_index('ix_campaigns_is_active', 'campaigns', ['is_active'])

    # Keyword analytics
    op.create_table(
        'search_console_keywords',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_url', sa.String(), nullable=False),
        sa.Column('keyword', sa.String(), nullable=False),
        sa.Column('initial_position', sa.Float(), nullable=True),
        sa.Column('initial_position_computed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_url', 'keyword', name='uq_search_console_keyword_site_keyword')
    )
    op.create_index('ix_search_console_keywords_id', 'search_console_keywords', ['id'])
    op.create_index('ix_search_console_keywords_site_url', 'search_console_keywords', ['site_url'])

    op.create_table(
        'keyword_daily_stats',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('keyword_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('average_rank', sa.Float(), nullable=True),
        sa.Column('search_volume', sa.Integer(), nullable=True),
        sa.Column('clicks', sa.Integer(), nullable=True),
        sa.Column('top_ranking_page_url', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['keyword_id'], ['search_console_keywords.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('keyword_id', 'date', name='uq_keyword_daily_stat_keyword_date')
    )
    op.create_index('ix_keyword_daily_stats_id', 'keyword_daily_stats', ['id'])
    op.create_index('ix_keyword_daily_stats_keyword_id', 'keyword_daily_stats', ['keyword_id'])
    op.create_index('ix_keyword_daily_stats_date', 'keyword_daily_stats', ['date'])

    op.create_table(
        'keyword_monthly_stats',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('keyword_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('average_rank', sa.Float(), nullable=True),
        sa.Column('search_volume', sa.Integer(), nullable=True),
        sa.Column('clicks', sa.Integer(), nullable=True),
        sa.Column('top_ranking_page_url', sa.Text(), nullable=True),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('calc_window_days', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['keyword_id'], ['search_console_keywords.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('keyword_id', 'year', 'month', name='uq_keyword_monthly_stat_keyword_month')
    )
    op.create_index('ix_keyword_monthly_stats_id', 'keyword_monthly_stats', ['id'])
    op.create_index('ix_keyword_monthly_stats_keyword_id', 'keyword_monthly_stats', ['keyword_id'])

    # Site traffic
    op.create_table(
        'search_console_traffic_analytics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_url', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_search_console_traffic_analytics_id', 'search_console_traffic_analytics', ['id'])
    op.create_index(
        'ix_search_console_traffic_analytics_site_url',
        'search_console_traffic_analytics',
        ['site_url'],
        unique=True,
    )

    for table, period_columns, constraint in (
        ('traffic_daily', [sa.Column('date', sa.Date(), nullable=False)],
         sa.UniqueConstraint('analytics_id', 'date', name='uq_traffic_daily_analytics_date')),
        ('traffic_monthly', [sa.Column('year', sa.Integer(), nullable=False),
                             sa.Column('month', sa.Integer(), nullable=False)],
         sa.UniqueConstraint('analytics_id', 'year', 'month', name='uq_traffic_monthly_analytics_month')),
    ):
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('analytics_id', sa.Integer(), nullable=False),
            *period_columns,
            sa.Column('clicks', sa.Integer(), nullable=True),
            sa.Column('impressions', sa.Integer(), nullable=True),
            sa.Column('ctr', sa.Float(), nullable=True),
            sa.Column('position', sa.Float(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['analytics_id'], ['search_console_traffic_analytics.id']),
            sa.PrimaryKeyConstraint('id'),
            constraint
        )
        op.create_index(f'ix_{table}_id', table, ['id'])
        op.create_index(f'ix_{table}_analytics_id', table, ['analytics_id'])
    op.create_index('ix_traffic_daily_date', 'traffic_daily', ['date'])

    # Sync bookkeeping
    op.create_table(
        'sync_checkpoints',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('flow', sa.String(), nullable=False),
        sa.Column('scope', sa.String(), nullable=False),
        sa.Column('keywords_digest', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('campaign_id', 'flow', 'scope', name='uq_sync_checkpoint_campaign_flow_scope')
    )
    op.create_index('ix_sync_checkpoints_id', 'sync_checkpoints', ['id'])
    op.create_index('ix_sync_checkpoints_campaign_id', 'sync_checkpoints', ['campaign_id'])
    op.create_index('ix_sync_checkpoints_flow', 'sync_checkpoints', ['flow'])

    op.create_table(
        'sync_run_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('flow', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('windows_processed', sa.Integer(), nullable=True),
        sa.Column('windows_skipped', sa.Integer(), nullable=True),
        sa.Column('windows_failed', sa.Integer(), nullable=True),
        sa.Column('records_upserted', sa.Integer(), nullable=True),
        sa.Column('records_failed', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_run_logs_id', 'sync_run_logs', ['id'])
    op.create_index('ix_sync_run_logs_campaign_id', 'sync_run_logs', ['campaign_id'])
    op.create_index('ix_sync_run_logs_flow', 'sync_run_logs', ['flow'])
    op.create_index('ix_sync_run_logs_status', 'sync_run_logs', ['status'])


def downgrade() -> None:
    for table in (
        'sync_run_logs',
        'sync_checkpoints',
        'traffic_monthly',
        'traffic_daily',
        'search_console_traffic_analytics',
        'keyword_monthly_stats',
        'keyword_daily_stats',
        'search_console_keywords',
        'campaigns',
        'google_accounts',
    ):
        op.drop_table(table)
