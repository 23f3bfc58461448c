from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'events',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('event', sa.String(256), index=True),
        sa.Column('distinct_id', sa.String(128), index=True),
        sa.Column('anonymous_id', sa.String(128)),
        sa.Column('timestamp', sa.DateTime, index=True),
        sa.Column('received_at', sa.DateTime, index=True),
        sa.Column('properties', sa.JSON),
        sa.Column('context', sa.JSON),
        sa.Column('project_id', sa.String(64), index=True),
        sa.Column('session_id', sa.String(128), index=True),
    )
    op.create_index('ix_events_event_ts', 'events', ['event', 'timestamp'])
    op.create_index('ix_events_distinct_ts', 'events', ['distinct_id', 'timestamp'])
    op.create_table(
        'feature_flags',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(128), unique=True, index=True),
        sa.Column('name', sa.String(256)),
        sa.Column('description', sa.String(1024)),
        sa.Column('active', sa.Boolean),
        sa.Column('rollout_percentage', sa.Integer),
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_table(
        'flag_decisions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('distinct_id', sa.String(128), index=True),
        sa.Column('flag_key', sa.String(128), index=True),
        sa.Column('variant', sa.String(32)),
        sa.Column('hash_value', sa.Float),
        sa.Column('decided_at', sa.DateTime),
    )
    op.create_index('ux_flag_decision_user_flag', 'flag_decisions', ['distinct_id', 'flag_key'], unique=True)


def downgrade():
    op.drop_index('ux_flag_decision_user_flag', table_name='flag_decisions')
    op.drop_table('flag_decisions')
    op.drop_table('feature_flags')
    op.drop_index('ix_events_distinct_ts', table_name='events')
    op.drop_index('ix_events_event_ts', table_name='events')
    op.drop_table('events')
