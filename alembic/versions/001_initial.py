"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2025-01-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
ACTIVE_JOB_PREDICATE = "status IN ('pending', 'in_progress')"


def upgrade() -> None:
    # Categories table
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('label_key', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    # Places table
    op.create_table(
        'places',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('postal_code', sa.String(length=20), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('website', sa.String(length=500), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('lat', sa.Numeric(precision=10, scale=7), nullable=True),
        sa.Column('lng', sa.Numeric(precision=10, scale=7), nullable=True),
        sa.Column('opening_hours', JSON_TYPE, nullable=True),
        sa.Column('scraped_content', JSON_TYPE, nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('premium_until', sa.DateTime(), nullable=True),
        sa.Column('avg_rating', sa.Numeric(precision=2, scale=1), nullable=True),
        sa.Column('review_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_review_at', sa.DateTime(), nullable=True),
        sa.Column('has_photos', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_top_rated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_community_favorite', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('badges_computed_at', sa.DateTime(), nullable=True),
        sa.Column('quality_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quality_flags', JSON_TYPE, nullable=True),
        sa.Column('quality_scored_at', sa.DateTime(), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='active'),
        sa.Column('status_last_checked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('places_quality_scored_at_idx', 'places', ['quality_scored_at'])
    op.create_index('places_quality_score_idx', 'places', ['quality_score'])
    op.create_index('places_updated_at_idx', 'places', ['updated_at'])

    # Place <-> category assignments
    op.create_table(
        'place_categories',
        sa.Column('place_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['place_id'], ['places.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('place_id', 'category_id')
    )

    # Place photos table
    op.create_table(
        'place_photos',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('place_id', sa.Integer(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['place_id'], ['places.id'], ondelete='CASCADE')
    )
    op.create_index('ix_place_photos_place_id', 'place_photos', ['place_id'])

    # Refresh job queue
    op.create_table(
        'place_refresh_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('place_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('reason', sa.String(length=50), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('worker_id', sa.String(length=128), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('exhausted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('retry_of_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['place_id'], ['places.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['retry_of_id'], ['place_refresh_jobs.id'], ondelete='SET NULL')
    )
    op.create_index('place_refresh_jobs_status_idx', 'place_refresh_jobs', ['status'])
    op.create_index('place_refresh_jobs_place_id_idx', 'place_refresh_jobs', ['place_id'])
    op.create_index(
        'place_refresh_jobs_claim_idx', 'place_refresh_jobs', ['status', 'priority', 'created_at']
    )
    op.create_index(
        'place_refresh_jobs_active_place_uq',
        'place_refresh_jobs',
        ['place_id'],
        unique=True,
        postgresql_where=sa.text(ACTIVE_JOB_PREDICATE),
        sqlite_where=sa.text(ACTIVE_JOB_PREDICATE),
    )

    # Audit log table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('actor_role', sa.String(length=30), nullable=False),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('target_type', sa.String(length=30), nullable=False),
        sa.Column('target_id', sa.String(length=100), nullable=True),
        sa.Column('metadata_json', JSON_TYPE, nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('audit_logs_event_type_idx', 'audit_logs', ['event_type'])
    op.create_index('audit_logs_created_at_idx', 'audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_index('audit_logs_created_at_idx', table_name='audit_logs')
    op.drop_index('audit_logs_event_type_idx', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('place_refresh_jobs_active_place_uq', table_name='place_refresh_jobs')
    op.drop_index('place_refresh_jobs_claim_idx', table_name='place_refresh_jobs')
    op.drop_index('place_refresh_jobs_place_id_idx', table_name='place_refresh_jobs')
    op.drop_index('place_refresh_jobs_status_idx', table_name='place_refresh_jobs')
    op.drop_table('place_refresh_jobs')
    op.drop_index('ix_place_photos_place_id', table_name='place_photos')
    op.drop_table('place_photos')
    op.drop_table('place_categories')
    op.drop_index('places_updated_at_idx', table_name='places')
    op.drop_index('places_quality_score_idx', table_name='places')
    op.drop_index('places_quality_scored_at_idx', table_name='places')
    op.drop_table('places')
    op.drop_table('categories')
