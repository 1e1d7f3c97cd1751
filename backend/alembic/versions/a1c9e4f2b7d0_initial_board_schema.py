"""Initial board schema (users, projects, members, columns, tasks, comments, activity)

Revision ID: a1c9e4f2b7d0
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates 10 tables:
- users, projects, project_members (tenancy)
- board_columns, tasks (ordered board)
- task_labels, task_comments, task_attachments, subtasks (task children)
- activity_logs (survives deletion of the rows it mentions)
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1c9e4f2b7d0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

member_role = sa.Enum('owner', 'admin', 'member', 'viewer', name='member_role')
project_visibility = sa.Enum('private', 'team', 'public', name='project_visibility')
task_priority = sa.Enum('low', 'medium', 'high', 'critical', name='task_priority')


def upgrade() -> None:
    # ---- users ----
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('avatar_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('subject'),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    # ---- projects ----
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('color', sa.String(), nullable=False, server_default='#3B82F6'),
        sa.Column('icon', sa.String(), nullable=True),
        sa.Column('visibility', project_visibility, nullable=False, server_default='team'),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # ---- project_members ----
    op.create_table(
        'project_members',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', member_role, nullable=False, server_default='member'),
        sa.Column('joined_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_project_member'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])

    # ---- board_columns ----
    op.create_table(
        'board_columns',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_board_columns_project_id', 'board_columns', ['project_id'])
    op.create_index('idx_col_project_pos', 'board_columns', ['project_id', 'position'])

    # ---- tasks ----
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('column_id', sa.String(), sa.ForeignKey('board_columns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('priority', task_priority, nullable=False, server_default='medium'),
        sa.Column('assignee_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_column_id', 'tasks', ['column_id'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('idx_task_col_pos', 'tasks', ['column_id', 'position'])

    # ---- task_labels ----
    op.create_table(
        'task_labels',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('color', sa.String(), nullable=False, server_default='#6366f1'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_labels_task_id', 'task_labels', ['task_id'])

    # ---- task_comments ----
    op.create_table(
        'task_comments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    # ---- task_attachments ----
    op.create_table(
        'task_attachments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('file_url', sa.String(), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('uploaded_by', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_attachments_task_id', 'task_attachments', ['task_id'])

    # ---- subtasks ----
    op.create_table(
        'subtasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subtasks_task_id', 'subtasks', ['task_id'])

    # ---- activity_logs ----
    op.create_table(
        'activity_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='SET NULL'), nullable=True),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('details', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_activity_logs_project_id', 'activity_logs', ['project_id'])
    op.create_index('ix_activity_logs_task_id', 'activity_logs', ['task_id'])
    op.create_index('idx_activity_project_time', 'activity_logs', ['project_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('activity_logs')
    op.drop_table('subtasks')
    op.drop_table('task_attachments')
    op.drop_table('task_comments')
    op.drop_table('task_labels')
    op.drop_table('tasks')
    op.drop_table('board_columns')
    op.drop_table('project_members')
    op.drop_table('projects')
    op.drop_table('users')

    bind = op.get_bind()
    task_priority.drop(bind, checkfirst=True)
    project_visibility.drop(bind, checkfirst=True)
    member_role.drop(bind, checkfirst=True)
