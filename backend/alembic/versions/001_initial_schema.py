"""Initial schema: users, domains, hosting services and jobs

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # === users ===
    op.create_table(
        'users',
        *_timestamps(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # === domains ===
    op.create_table(
        'domains',
        *_timestamps(),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('domain_name', sa.String(255), nullable=False),
        sa.Column('registrar', sa.String(20), nullable=False, server_default=sa.text("'other'")),
        sa.Column('hosted_zone_id', sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('domain_name'),
    )
    op.create_index('ix_domains_owner_id', 'domains', ['owner_id'])

    # === hosting_services ===
    op.create_table(
        'hosting_services',
        *_timestamps(),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('domain_id', sa.Integer(), nullable=False),
        sa.Column('domain_name', sa.String(255), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default=sa.text("'provisioning'")),
        sa.Column('plan', sa.JSON(), nullable=False),
        sa.Column('static_config', sa.JSON(), nullable=True),
        sa.Column('dynamic_config', sa.JSON(), nullable=True),
        sa.Column('provisioning_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('provisioning_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('steps', sa.JSON(), nullable=False),
        sa.Column('logs', sa.JSON(), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('key_material_encrypted', sa.Text(), nullable=True),
        sa.Column('db_password_encrypted', sa.Text(), nullable=True),
        sa.Column('next_billing_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_billing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('suspended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('suspension_reason', sa.String(255), nullable=True),
        sa.Column('auto_unsuspend_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('usage', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['domain_id'], ['domains.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_hosting_services_user_id', 'hosting_services', ['user_id'])
    op.create_index('ix_hosting_services_domain_name', 'hosting_services', ['domain_name'])
    op.create_index('ix_hosting_services_status', 'hosting_services', ['status'])
    op.create_index('ix_hosting_services_next_billing_date', 'hosting_services', ['next_billing_date'])
    op.create_index('ix_hosting_services_user_status', 'hosting_services', ['user_id', 'status'])
    op.create_index(
        'uq_hosting_services_live_domain',
        'hosting_services',
        ['domain_id'],
        unique=True,
        postgresql_where=sa.text("status <> 'terminated'"),
    )

    # === hosting_jobs ===
    op.create_table(
        'hosting_jobs',
        *_timestamps(),
        sa.Column('job_id', sa.String(100), nullable=False),
        sa.Column('hosting_service_id', sa.Integer(), nullable=False),
        sa.Column('operation', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('progress', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('result', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['hosting_service_id'], ['hosting_services.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_hosting_jobs_job_id', 'hosting_jobs', ['job_id'])
    op.create_index('ix_hosting_jobs_hosting_service_id', 'hosting_jobs', ['hosting_service_id'])


def downgrade() -> None:
    op.drop_table('hosting_jobs')
    op.drop_index('uq_hosting_services_live_domain', table_name='hosting_services')
    op.drop_table('hosting_services')
    op.drop_table('domains')
    op.drop_table('users')
