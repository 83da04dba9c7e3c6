"""initial schema

Revision ID: 5d1e0b7c9a42
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5d1e0b7c9a42'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _external_columns() -> list[sa.Column]:
    """Columns of every table mirrored from an external server."""
    return [
        sa.Column('external', sa.JSON(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('deleted', sa.Boolean(), nullable=False),
        sa.Column('itime', sa.DateTime(), nullable=True),
        sa.Column('etime', sa.DateTime(), nullable=True),
        sa.Column('ctime', sa.DateTime(), nullable=False),
        sa.Column('mtime', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create servers, projects, repos, users, stories, reactions, commits, task logs and import failures."""
    op.create_table('servers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('disabled', sa.Boolean(), nullable=False),
        sa.Column('deleted', sa.Boolean(), nullable=False),
        sa.Column('ctime', sa.DateTime(), nullable=False),
        sa.Column('mtime', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_table('projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('user_ids', sa.JSON(), nullable=False),
        sa.Column('repo_ids', sa.JSON(), nullable=False),
        sa.Column('deleted', sa.Boolean(), nullable=False),
        sa.Column('ctime', sa.DateTime(), nullable=False),
        sa.Column('mtime', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_table('repos',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('user_ids', sa.JSON(), nullable=False),
        *_external_columns(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('role_ids', sa.JSON(), nullable=False),
        sa.Column('disabled', sa.Boolean(), nullable=False),
        *_external_columns(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('stories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('user_ids', sa.JSON(), nullable=False),
        sa.Column('role_ids', sa.JSON(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('language_codes', sa.JSON(), nullable=False),
        sa.Column('public', sa.Boolean(), nullable=False),
        sa.Column('published', sa.Boolean(), nullable=False),
        sa.Column('ptime', sa.DateTime(), nullable=True),
        sa.Column('btime', sa.DateTime(), nullable=True),
        sa.Column('external_key', sa.String(length=200), nullable=True),
        *_external_columns(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'external_key', name='uq_story_project_external_key')
    )
    op.create_index('ix_stories_project_type', 'stories', ['project_id', 'type'])
    op.create_table('reactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('story_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('public', sa.Boolean(), nullable=False),
        sa.Column('published', sa.Boolean(), nullable=False),
        sa.Column('ptime', sa.DateTime(), nullable=True),
        *_external_columns(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['story_id'], ['stories.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_reactions_story_id', 'reactions', ['story_id'])
    op.create_table('commits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('initial_branch', sa.String(length=200), nullable=False),
        sa.Column('title_hash', sa.String(length=32), nullable=False),
        sa.Column('ptime', sa.DateTime(), nullable=True),
        sa.Column('external_key', sa.String(length=200), nullable=True),
        *_external_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_key')
    )
    op.create_index('ix_commits_title_hash', 'commits', ['title_hash'])
    op.create_table('task_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('server_id', sa.Integer(), nullable=True),
        sa.Column('repo_id', sa.Integer(), nullable=True),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('options', sa.JSON(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('completion', sa.Integer(), nullable=False),
        sa.Column('failed', sa.Boolean(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_task_logs_action_target', 'task_logs', ['action', 'server_id', 'repo_id', 'project_id']
    )
    op.create_table('import_failures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('server_id', sa.Integer(), nullable=False),
        sa.Column('repo_id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('event_key', sa.String(length=200), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('is_hook', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('error_type', sa.String(length=100), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'RESOLVED', 'PERMANENT', name='importfailurestatus'), nullable=False),
        sa.Column('failed_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['server_id'], ['servers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['repo_id'], ['repos.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('repo_id', 'project_id', 'event_key', 'status', name='uq_import_failure_event_status')
    )


def downgrade() -> None:
    """Drop every table."""
    op.drop_table('import_failures')
    op.drop_index('ix_task_logs_action_target', table_name='task_logs')
    op.drop_table('task_logs')
    op.drop_index('ix_commits_title_hash', table_name='commits')
    op.drop_table('commits')
    op.drop_index('ix_reactions_story_id', table_name='reactions')
    op.drop_table('reactions')
    op.drop_index('ix_stories_project_type', table_name='stories')
    op.drop_table('stories')
    op.drop_table('users')
    op.drop_table('repos')
    op.drop_table('projects')
    op.drop_table('servers')
    # Drop the enum type
    sa.Enum(name='importfailurestatus').drop(op.get_bind(), checkfirst=True)
