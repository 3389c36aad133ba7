"""Initial orchestration tables

Revision ID: 001_initial_orchestration
Revises:
Create Date: 2026-10-18

Creates all tables for:
- Accounts: users, credentials, repositories, notification_channels
- Orchestration: epics, tasks
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_orchestration'
down_revision = None
branch_labels = None
depends_on = None

EPIC_STATUSES = ('pending', 'generating_spec', 'running', 'paused', 'completed', 'failed')
TASK_STATUSES = ('pending', 'running', 'pr_open', 'merging', 'completed', 'failed')


def upgrade() -> None:
    # ==========================================================================
    # Create Enums
    # ==========================================================================

    epic_status_enum = postgresql.ENUM(*EPIC_STATUSES, name='epicstatus', create_type=False)
    epic_status_enum.create(op.get_bind(), checkfirst=True)

    task_status_enum = postgresql.ENUM(*TASK_STATUSES, name='taskstatus', create_type=False)
    task_status_enum.create(op.get_bind(), checkfirst=True)

    # ==========================================================================
    # Accounts
    # ==========================================================================

    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'credentials',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('service_name', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('api_key', sa.String(length=1000), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'service_name', 'name', name='uq_credentials_user_service_name'),
    )
    op.create_index('ix_credentials_user_id', 'credentials', ['user_id'], unique=False)

    op.create_table(
        'repositories',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('github_credential_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('github_url', sa.String(length=2000), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['github_credential_id'], ['credentials.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'name', name='uq_repositories_user_name'),
    )
    op.create_index('ix_repositories_user_id', 'repositories', ['user_id'], unique=False)
    op.create_index('ix_repositories_github_credential_id', 'repositories', ['github_credential_id'], unique=False)

    op.create_table(
        'notification_channels',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('service_name', sa.String(length=50), nullable=False),
        sa.Column('channel_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'user_id', 'service_name', 'channel_id',
            name='uq_notification_channels_user_service_channel',
        ),
    )
    op.create_index('ix_notification_channels_user_id', 'notification_channels', ['user_id'], unique=False)

    # ==========================================================================
    # Orchestration
    # ==========================================================================

    op.create_table(
        'epics',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('repository_id', sa.UUID(), nullable=False),
        sa.Column('llm_credential_id', sa.UUID(), nullable=True),
        sa.Column('cursor_agent_credential_id', sa.UUID(), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=True),
        sa.Column('base_branch', sa.String(length=255), nullable=False, server_default='main'),
        sa.Column('status', sa.Enum(*EPIC_STATUSES, name='epicstatus'), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['repository_id'], ['repositories.id']),
        sa.ForeignKeyConstraint(['llm_credential_id'], ['credentials.id']),
        sa.ForeignKeyConstraint(['cursor_agent_credential_id'], ['credentials.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_epics_user_id', 'epics', ['user_id'], unique=False)
    op.create_index('ix_epics_repository_id', 'epics', ['repository_id'], unique=False)
    op.create_index('ix_epics_llm_credential_id', 'epics', ['llm_credential_id'], unique=False)
    op.create_index('ix_epics_cursor_agent_credential_id', 'epics', ['cursor_agent_credential_id'], unique=False)
    op.create_index('ix_epics_status', 'epics', ['status'], unique=False)

    op.create_table(
        'tasks',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('epic_id', sa.UUID(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum(*TASK_STATUSES, name='taskstatus'), nullable=False, server_default='pending'),
        sa.Column('cursor_agent_id', sa.String(length=255), nullable=True),
        sa.Column('branch_name', sa.String(length=255), nullable=True),
        sa.Column('pr_url', sa.String(length=2000), nullable=True),
        sa.Column('debug_log', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['epic_id'], ['epics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('epic_id', 'position', name='uq_tasks_epic_position'),
        sa.CheckConstraint('position >= 0', name='ck_tasks_position_non_negative'),
    )
    op.create_index('ix_tasks_epic_id', 'tasks', ['epic_id'], unique=False)
    op.create_index('ix_tasks_status', 'tasks', ['status'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_tasks_status', table_name='tasks')
    op.drop_index('ix_tasks_epic_id', table_name='tasks')
    op.drop_table('tasks')

    op.drop_index('ix_epics_status', table_name='epics')
    op.drop_index('ix_epics_cursor_agent_credential_id', table_name='epics')
    op.drop_index('ix_epics_llm_credential_id', table_name='epics')
    op.drop_index('ix_epics_repository_id', table_name='epics')
    op.drop_index('ix_epics_user_id', table_name='epics')
    op.drop_table('epics')

    op.drop_index('ix_notification_channels_user_id', table_name='notification_channels')
    op.drop_table('notification_channels')

    op.drop_index('ix_repositories_github_credential_id', table_name='repositories')
    op.drop_index('ix_repositories_user_id', table_name='repositories')
    op.drop_table('repositories')

    op.drop_index('ix_credentials_user_id', table_name='credentials')
    op.drop_table('credentials')

    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS taskstatus')
    op.execute('DROP TYPE IF EXISTS epicstatus')
