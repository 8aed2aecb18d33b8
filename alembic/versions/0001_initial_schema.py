"""initial schema: issues, issue_upvotes, issue_activity

Creates the issue table with its moderation and ranking columns, the per-fingerprint
upvote table and the moderation activity log.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

issue_status = sa.Enum('new', 'in_progress', 'resolved', name='issuestatus')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'issues',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.String(length=4000), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=False),
        sa.Column('status', issue_status, nullable=False, server_default='new'),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('location_name', sa.String(length=200), nullable=True),
        sa.Column('street_address', sa.String(length=300), nullable=True),
        sa.Column('landmark', sa.String(length=200), nullable=True),
        sa.Column('image_url', sa.String(length=500), nullable=True),
        sa.Column('is_spam', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('duplicate_of', sa.Integer(), sa.ForeignKey('issues.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reporter_fingerprint', sa.String(length=100), nullable=True),
        sa.Column('priority_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('upvotes_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assigned_to', sa.String(length=120), nullable=True),
        sa.Column('public_notes', sa.Text(), nullable=True),
        sa.Column('response_time', sa.Interval(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('in_progress_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_issues_title', 'issues', ['title'])
    op.create_index('ix_issues_category', 'issues', ['category'])
    op.create_index('ix_issues_status', 'issues', ['status'])
    op.create_index('ix_issues_is_spam', 'issues', ['is_spam'])
    op.create_index('ix_issues_duplicate_of', 'issues', ['duplicate_of'])
    op.create_index('ix_issues_reporter_fingerprint', 'issues', ['reporter_fingerprint'])
    op.create_index('ix_issues_priority_score', 'issues', ['priority_score'])
    op.create_index('ix_issues_created_at', 'issues', ['created_at'])
    op.create_index('ix_issues_latitude_longitude', 'issues', ['latitude', 'longitude'])

    op.create_table(
        'issue_upvotes',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('issue_id', sa.Integer(), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_ip', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('issue_id', 'user_ip', name='uq_issue_upvote'),
    )
    op.create_index('ix_issue_upvotes_issue_id', 'issue_upvotes', ['issue_id'])

    op.create_table(
        'issue_activity',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('issue_id', sa.Integer(), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(length=30), nullable=False),
        sa.Column('detail', sa.String(length=500), nullable=True),
        sa.Column('at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_issue_activity_issue_id', 'issue_activity', ['issue_id'])
    op.create_index('ix_issue_activity_at', 'issue_activity', ['at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_issue_activity_at', table_name='issue_activity')
    op.drop_index('ix_issue_activity_issue_id', table_name='issue_activity')
    op.drop_table('issue_activity')
    op.drop_index('ix_issue_upvotes_issue_id', table_name='issue_upvotes')
    op.drop_table('issue_upvotes')
    for name in ('latitude_longitude', 'created_at', 'priority_score', 'reporter_fingerprint',
                 'duplicate_of', 'is_spam', 'status', 'category', 'title'):
        op.drop_index(f'ix_issues_{name}', table_name='issues')
    op.drop_table('issues')
    issue_status.drop(op.get_bind(), checkfirst=True)
