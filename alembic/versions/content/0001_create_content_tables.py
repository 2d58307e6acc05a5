"""Create document_files, documents and links.

Revision ID: 0001_content
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_content'
down_revision = None
branch_labels = None
depends_on = None

processing_status = sa.Enum('Processing', 'Processed', 'Failed', name='processing_status')


def upgrade() -> None:
    """Create the content store tables."""
    op.create_table(
        'document_files',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('label', sa.String(255), nullable=True),
        sa.Column('source_file_path', sa.String(), nullable=False),
        sa.Column('aux_file_path', sa.String(), nullable=True),
        sa.Column('doc_status', processing_status, nullable=False),
        sa.Column('links_status', processing_status, nullable=False),
        sa.Column('sent_to_pipeline', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )

    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('document_metadata', sa.Text(), nullable=True),
        sa.Column('document_file_id', sa.Integer(),
                  sa.ForeignKey('document_files.id'), nullable=True),
        sa.Column('expected_link_count', sa.Integer(), nullable=False, server_default='-1',
                  comment='-1 while the number of outgoing links is unknown'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index(
        'uq_documents_active_title',
        'documents',
        ['title'],
        unique=True,
        postgresql_where=sa.text('active'),
        sqlite_where=sa.text('active'),
    )

    op.create_table(
        'links',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('label', sa.String(512), nullable=True),
        sa.Column('from_document_id', sa.Integer(),
                  sa.ForeignKey('documents.id'), nullable=False),
        sa.Column('to_document_id', sa.Integer(),
                  sa.ForeignKey('documents.id'), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('staging_key', sa.String(64), nullable=True, unique=True,
                  comment='ID and creation time of the staged link row this link was created from'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index('ix_links_from_document_id', 'links', ['from_document_id'])


def downgrade() -> None:
    """Drop the content store tables."""
    op.drop_index('ix_links_from_document_id', table_name='links')
    op.drop_table('links')
    op.drop_index('uq_documents_active_title', table_name='documents')
    op.drop_table('documents')
    op.drop_table('document_files')
    processing_status.drop(op.get_bind(), checkfirst=True)
