"""create_regulatory_crawler_tables

Revision ID: 3f9a1c2e7b41
Revises: 
Create Date: 2026-10-17 09:12:40.118302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f9a1c2e7b41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

source_type = sa.Enum('GOVERNMENT', 'REGULATOR', 'LEGAL_PUBLISHER', 'API', name='sourcetype')
update_frequency = sa.Enum('HOURLY', 'DAILY', 'WEEKLY', name='updatefrequency')
job_type = sa.Enum('SCHEDULED', 'MANUAL', 'RETRY', name='jobtype')
job_status = sa.Enum('PENDING', 'RUNNING', 'COMPLETED', 'FAILED', 'CANCELLED', name='jobstatus')
update_status = sa.Enum('PENDING', 'REVIEWED', 'IMPLEMENTED', 'IGNORED', name='updatestatus')
impact_level = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='impactlevel')


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema - Create source registry, crawler job and update tables."""
    op.create_table(
        'regulatory_sources',
        *_audit_columns(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('jurisdiction', sa.String(length=100), nullable=False),
        sa.Column('source_type', source_type, nullable=False),
        sa.Column('base_url', sa.String(length=1024), nullable=False),
        sa.Column('crawl_config', sa.JSON(), nullable=True),
        sa.Column('selectors', sa.JSON(), nullable=True),
        sa.Column('update_frequency', update_frequency, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_crawled', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_crawl', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reliability', sa.Float(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_regulatory_sources')),
        sa.UniqueConstraint('name', name=op.f('uq_regulatory_sources_name')),
    )
    # Due-source query: WHERE is_active AND (next_crawl IS NULL OR next_crawl <= now)
    op.create_index('ix_regulatory_sources_is_active', 'regulatory_sources', ['is_active'], unique=False)
    op.create_index('ix_regulatory_sources_next_crawl', 'regulatory_sources', ['next_crawl'], unique=False)

    op.create_table(
        'crawler_jobs',
        *_audit_columns(),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('job_type', job_type, nullable=False),
        sa.Column('status', job_status, nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updates_found', sa.Integer(), nullable=False),
        sa.Column('new_updates', sa.Integer(), nullable=False),
        sa.Column('pages_scraped', sa.Integer(), nullable=False),
        sa.Column('execution_time', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('data_extracted', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(
            ['source_id'],
            ['regulatory_sources.id'],
            name=op.f('fk_crawler_jobs_source_id_regulatory_sources'),
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_crawler_jobs')),
    )
    op.create_index('ix_crawler_jobs_source_id', 'crawler_jobs', ['source_id'], unique=False)
    op.create_index('ix_crawler_jobs_status', 'crawler_jobs', ['status'], unique=False)

    op.create_table(
        'regulatory_updates',
        *_audit_columns(),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('regulation_id', sa.Integer(), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('update_type', sa.String(length=100), nullable=True),
        sa.Column('published_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('effective_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source_url', sa.String(length=1024), nullable=False),
        sa.Column('document_url', sa.String(length=1024), nullable=True),
        sa.Column('status', update_status, nullable=False),
        sa.Column('impact', impact_level, nullable=True),
        sa.Column('keywords', sa.JSON(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('extra_metadata', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(
            ['source_id'],
            ['regulatory_sources.id'],
            name=op.f('fk_regulatory_updates_source_id_regulatory_sources'),
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_regulatory_updates')),
        # Dedup key; concurrent crawls of the same item collide here
        sa.UniqueConstraint('title', 'source_url', name='uq_regulatory_updates_dedup'),
    )
    op.create_index('ix_regulatory_updates_source_id', 'regulatory_updates', ['source_id'], unique=False)
    op.create_index('ix_regulatory_updates_update_type', 'regulatory_updates', ['update_type'], unique=False)
    op.create_index('ix_regulatory_updates_status', 'regulatory_updates', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade schema - Drop crawler tables."""
    op.drop_index('ix_regulatory_updates_status', table_name='regulatory_updates')
    op.drop_index('ix_regulatory_updates_update_type', table_name='regulatory_updates')
    op.drop_index('ix_regulatory_updates_source_id', table_name='regulatory_updates')
    op.drop_table('regulatory_updates')
    op.drop_index('ix_crawler_jobs_status', table_name='crawler_jobs')
    op.drop_index('ix_crawler_jobs_source_id', table_name='crawler_jobs')
    op.drop_table('crawler_jobs')
    op.drop_index('ix_regulatory_sources_next_crawl', table_name='regulatory_sources')
    op.drop_index('ix_regulatory_sources_is_active', table_name='regulatory_sources')
    op.drop_table('regulatory_sources')
