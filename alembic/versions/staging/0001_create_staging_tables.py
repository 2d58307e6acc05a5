"""Create the staging tables shared with the document pipeline.

Revision ID: 0001_staging
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_staging'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create staged_documents, staged_links, staged_file_paths and dead_letters."""
    op.create_table(
        'staged_documents',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('document_metadata', sa.Text(), nullable=True),
        sa.Column('document_file_id', sa.Integer(), nullable=True),
        sa.Column('link_count', sa.Integer(), nullable=True),
        sa.Column('failed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_staged_documents_failed', 'staged_documents', ['failed'])

    op.create_table(
        'staged_links',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('from_title', sa.String(255), nullable=True),
        sa.Column('to_title', sa.String(255), nullable=True),
        sa.Column('failed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_staged_links_failed', 'staged_links', ['failed'])

    op.create_table(
        'staged_file_paths',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('pdf_path', sa.String(), nullable=False),
        sa.Column('process_path', sa.String(), nullable=False, server_default=''),
        sa.Column('document_file_id', sa.Integer(), nullable=False),
        sa.Column('failed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_staged_file_paths_failed', 'staged_file_paths', ['failed'])

    op.create_table(
        'dead_letters',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('staged_id', sa.Integer(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False,
                  comment='Columns of the staged row as JSON'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('failed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('dead_lettered_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index('ix_dead_letters_kind', 'dead_letters', ['kind'])


def downgrade() -> None:
    """Drop the staging tables."""
    op.drop_index('ix_dead_letters_kind', table_name='dead_letters')
    op.drop_table('dead_letters')
    op.drop_index('ix_staged_file_paths_failed', table_name='staged_file_paths')
    op.drop_table('staged_file_paths')
    op.drop_index('ix_staged_links_failed', table_name='staged_links')
    op.drop_table('staged_links')
    op.drop_index('ix_staged_documents_failed', table_name='staged_documents')
    op.drop_table('staged_documents')
