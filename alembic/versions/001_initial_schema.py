"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

api_type = sa.Enum('grafanacloud', 'elasticsearch', 'cloudwatch', name='api_type')
auth_type = sa.Enum('bearer_token', 'basic_auth', 'aws_access_key', name='auth_type')
query_type = sa.Enum('prometheus', 'elasticsearch_aggregate', 'cloudwatch', name='query_type')
interval_type = sa.Enum('hourly', 'daily', 'weekly', name='interval_type')


def upgrade() -> None:
    # Create providers table
    op.create_table(
        'providers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('api_type', api_type, nullable=False),
        sa.Column('api_url', sa.String(), nullable=False),
        sa.Column('auth_type', auth_type, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_index(op.f('ix_providers_id'), 'providers', ['id'], unique=False)

    # Create sources table
    op.create_table(
        'sources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('provider_id', sa.Integer(), nullable=False),
        sa.Column('dataset', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_id', 'dataset', name='uq_sources_provider_id_dataset')
    )
    op.create_index(op.f('ix_sources_id'), 'sources', ['id'], unique=False)
    op.create_index(op.f('ix_sources_provider_id'), 'sources', ['provider_id'], unique=False)

    # Create queries table
    op.create_table(
        'queries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('query', sa.String(), nullable=False),
        sa.Column('query_type', query_type, nullable=False),
        sa.Column('interval', interval_type, nullable=False),
        sa.Column('start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finish', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['source_id'], ['sources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_queries_id'), 'queries', ['id'], unique=False)
    op.create_index(op.f('ix_queries_source_id'), 'queries', ['source_id'], unique=False)

    # Create collections table
    op.create_table(
        'collections',
        sa.Column('query_id', sa.Integer(), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['query_id'], ['queries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('query_id', 'seq')
    )


def downgrade() -> None:
    op.drop_table('collections')
    op.drop_index(op.f('ix_queries_source_id'), table_name='queries')
    op.drop_index(op.f('ix_queries_id'), table_name='queries')
    op.drop_table('queries')
    op.drop_index(op.f('ix_sources_provider_id'), table_name='sources')
    op.drop_index(op.f('ix_sources_id'), table_name='sources')
    op.drop_table('sources')
    op.drop_index(op.f('ix_providers_id'), table_name='providers')
    op.drop_table('providers')

    bind = op.get_bind()
    for enum_type in (interval_type, query_type, auth_type, api_type):
        enum_type.drop(bind, checkfirst=True)
