"""Initial arena engine schema

Revision ID: 3f1c9a7e2b10
Revises:
Create Date: 2026-10-18 09:12:44.210381

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3f1c9a7e2b10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade database schema."""

    # Agents
    op.create_table('agents',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('handle', sa.String(length=255), nullable=True),
        sa.Column('api_key', sa.String(length=255), nullable=True),
        sa.Column('wallet_address', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('global_score', sa.Float(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_agents'),
        sa.UniqueConstraint('handle', name='uq_agents_handle'),
        sa.UniqueConstraint('api_key', name='uq_agents_api_key'),
    )
    op.create_index('ix_agents_owner_id', 'agents', ['owner_id'], unique=False)
    op.create_index('idx_agents_status', 'agents', ['status'], unique=False)

    # Competitions
    op.create_table('competitions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('cross_chain_trading_type', sa.String(length=50), nullable=False),
        sa.Column('evaluation_metric', sa.String(length=50), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('join_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('join_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('max_participants', sa.Integer(), nullable=True),
        sa.Column('registered_participants', sa.Integer(), nullable=False),
        sa.Column('minimum_stake', sa.Float(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_competitions'),
    )
    op.create_index('ix_competitions_name', 'competitions', ['name'], unique=False)
    op.create_index('idx_competitions_status_start', 'competitions', ['status', 'start_date'], unique=False)
    op.create_index(
        'uq_competitions_single_active', 'competitions', ['status'], unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table('competition_agents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('deactivation_reason', sa.String(length=500), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_competition_agents_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_competition_agents_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_competition_agents'),
    )
    op.create_index('ix_competition_agents_competition_id', 'competition_agents', ['competition_id'], unique=False)
    op.create_index('ix_competition_agents_agent_id', 'competition_agents', ['agent_id'], unique=False)
    op.create_index('idx_competition_agent', 'competition_agents', ['competition_id', 'agent_id'], unique=True)
    op.create_index('idx_competition_agent_status', 'competition_agents', ['competition_id', 'status'], unique=False)

    op.create_table('trading_constraints',
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('minimum_pair_age_hours', sa.Float(), nullable=False),
        sa.Column('minimum_24h_volume_usd', sa.Float(), nullable=False),
        sa.Column('minimum_liquidity_usd', sa.Float(), nullable=False),
        sa.Column('minimum_fdv_usd', sa.Float(), nullable=False),
        sa.Column('min_trades_per_day', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_trading_constraints_competition_id_competitions'),
        sa.PrimaryKeyConstraint('competition_id', name='pk_trading_constraints'),
    )

    # Trading
    op.create_table('balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('token_address', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('symbol', sa.String(length=50), nullable=True),
        sa.Column('specific_chain', sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount >= 0', name='ck_balances_amount_non_negative'),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_balances_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_balances_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_balances'),
    )
    op.create_index('idx_balance_agent_competition_token', 'balances',
                    ['agent_id', 'competition_id', 'token_address'], unique=True)

    op.create_table('trades',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('from_token', sa.String(length=255), nullable=False),
        sa.Column('to_token', sa.String(length=255), nullable=False),
        sa.Column('from_token_symbol', sa.String(length=50), nullable=True),
        sa.Column('to_token_symbol', sa.String(length=50), nullable=True),
        sa.Column('from_amount', sa.Float(), nullable=False),
        sa.Column('to_amount', sa.Float(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('trade_amount_usd', sa.Float(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('from_chain', sa.String(length=20), nullable=True),
        sa.Column('to_chain', sa.String(length=20), nullable=True),
        sa.Column('from_specific_chain', sa.String(length=50), nullable=True),
        sa.Column('to_specific_chain', sa.String(length=50), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_trades_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_trades_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_trades'),
    )
    op.create_index('idx_trades_agent_competition', 'trades', ['agent_id', 'competition_id'], unique=False)
    op.create_index('idx_trades_competition_timestamp', 'trades', ['competition_id', 'timestamp'], unique=False)

    op.create_table('portfolio_snapshots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_value', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_portfolio_snapshots_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_portfolio_snapshots_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_portfolio_snapshots'),
    )
    op.create_index('idx_snapshots_competition_agent_timestamp', 'portfolio_snapshots',
                    ['competition_id', 'agent_id', 'timestamp'], unique=False)

    # Final standings and rewards
    op.create_table('competitions_leaderboard',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('score', sa.Float(), nullable=False),
        sa.Column('total_agents', sa.Integer(), nullable=False),
        sa.Column('pnl', sa.Float(), nullable=False),
        sa.Column('starting_value', sa.Float(), nullable=False),
        sa.Column('calmar_ratio', sa.Float(), nullable=True),
        sa.Column('sortino_ratio', sa.Float(), nullable=True),
        sa.Column('simple_return', sa.Float(), nullable=True),
        sa.Column('max_drawdown', sa.Float(), nullable=True),
        sa.Column('downside_deviation', sa.Float(), nullable=True),
        sa.Column('total_equity', sa.Float(), nullable=True),
        sa.Column('has_risk_metrics', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_competitions_leaderboard_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_competitions_leaderboard_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_competitions_leaderboard'),
    )
    op.create_index('idx_leaderboard_competition_agent', 'competitions_leaderboard',
                    ['competition_id', 'agent_id'], unique=True)
    op.create_index('idx_leaderboard_competition_rank', 'competitions_leaderboard',
                    ['competition_id', 'rank'], unique=False)

    op.create_table('competition_rewards',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('reward', sa.Float(), nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_competition_rewards_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_competition_rewards_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_competition_rewards'),
    )
    op.create_index('idx_rewards_competition_rank', 'competition_rewards', ['competition_id', 'rank'], unique=True)

    # Perpetual futures
    op.create_table('perps_competition_configs',
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('data_source', sa.String(length=100), nullable=False),
        sa.Column('initial_capital', sa.Float(), nullable=False),
        sa.Column('self_funding_threshold_usd', sa.Float(), nullable=True),
        sa.Column('min_funding_threshold', sa.Float(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_perps_competition_configs_competition_id_competitions'),
        sa.PrimaryKeyConstraint('competition_id', name='pk_perps_competition_configs'),
    )

    op.create_table('perps_account_summaries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('total_equity', sa.Float(), nullable=False),
        sa.Column('total_pnl', sa.Float(), nullable=True),
        sa.Column('initial_capital', sa.Float(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_perps_account_summaries_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_perps_account_summaries_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_perps_account_summaries'),
    )
    op.create_index('idx_perps_summaries_competition_agent_ts', 'perps_account_summaries',
                    ['competition_id', 'agent_id', 'timestamp'], unique=False)

    op.create_table('perps_risk_metrics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('simple_return', sa.Float(), nullable=True),
        sa.Column('annualized_return', sa.Float(), nullable=True),
        sa.Column('max_drawdown', sa.Float(), nullable=True),
        sa.Column('calmar_ratio', sa.Float(), nullable=True),
        sa.Column('sortino_ratio', sa.Float(), nullable=True),
        sa.Column('downside_deviation', sa.Float(), nullable=True),
        sa.Column('snapshot_count', sa.Integer(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_perps_risk_metrics_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_perps_risk_metrics_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_perps_risk_metrics'),
    )
    op.create_index('idx_perps_risk_metrics_agent_competition', 'perps_risk_metrics',
                    ['agent_id', 'competition_id'], unique=True)

    op.create_table('perps_transfer_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('asset', sa.String(length=50), nullable=False),
        sa.Column('from_address', sa.String(length=255), nullable=True),
        sa.Column('to_address', sa.String(length=255), nullable=True),
        sa.Column('tx_hash', sa.String(length=255), nullable=False),
        sa.Column('transfer_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_perps_transfer_history_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_perps_transfer_history_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_perps_transfer_history'),
    )
    op.create_index('idx_transfer_history_competition_tx', 'perps_transfer_history',
                    ['competition_id', 'tx_hash'], unique=True)
    op.create_index('idx_transfer_history_agent', 'perps_transfer_history',
                    ['agent_id', 'competition_id'], unique=False)

    op.create_table('perps_self_funding_alerts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.String(length=36), nullable=False),
        sa.Column('competition_id', sa.String(length=36), nullable=False),
        sa.Column('expected_equity', sa.Float(), nullable=False),
        sa.Column('actual_equity', sa.Float(), nullable=False),
        sa.Column('unexplained_amount', sa.Float(), nullable=False),
        sa.Column('account_snapshot', sa.JSON(), nullable=True),
        sa.Column('detection_method', sa.String(length=50), nullable=False),
        sa.Column('confidence', sa.String(length=20), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('evidence', sa.JSON(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('reviewed', sa.Boolean(), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.String(length=255), nullable=True),
        sa.Column('action_taken', sa.String(length=100), nullable=True),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], name='fk_perps_self_funding_alerts_agent_id_agents'),
        sa.ForeignKeyConstraint(['competition_id'], ['competitions.id'],
                                name='fk_perps_self_funding_alerts_competition_id_competitions'),
        sa.PrimaryKeyConstraint('id', name='pk_perps_self_funding_alerts'),
    )
    op.create_index('idx_self_funding_alerts_competition_agent', 'perps_self_funding_alerts',
                    ['competition_id', 'agent_id'], unique=False)
    op.create_index('idx_self_funding_alerts_reviewed', 'perps_self_funding_alerts', ['reviewed'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('perps_self_funding_alerts')
    op.drop_table('perps_transfer_history')
    op.drop_table('perps_risk_metrics')
    op.drop_table('perps_account_summaries')
    op.drop_table('perps_competition_configs')
    op.drop_table('competition_rewards')
    op.drop_table('competitions_leaderboard')
    op.drop_table('portfolio_snapshots')
    op.drop_table('trades')
    op.drop_table('balances')
    op.drop_table('trading_constraints')
    op.drop_table('competition_agents')
    op.drop_table('competitions')
    op.drop_table('agents')
