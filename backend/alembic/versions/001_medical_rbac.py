"""Medical RBAC audit trail and emergency overrides

Revision ID: 001_medical_rbac
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_medical_rbac'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'medical_audit_logs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('staff_id', sa.String(100), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('resource', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('patient_id', sa.String(), nullable=True),
        sa.Column('department', sa.String(50), nullable=True),
        sa.Column('is_emergency_override', sa.Boolean(), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    for column in ('user_id', 'action', 'patient_id', 'department', 'is_emergency_override', 'timestamp'):
        op.create_index(f'ix_medical_audit_logs_{column}', 'medical_audit_logs', [column])

    op.create_table(
        'emergency_overrides',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('staff_id', sa.String(100), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.Column('reviewed_by', sa.String(100), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    for column in ('user_id', 'patient_id', 'is_active'):
        op.create_index(f'ix_emergency_overrides_{column}', 'emergency_overrides', [column])


def downgrade() -> None:
    # Compliance data: dropping these tables destroys the audit trail
    op.drop_table('emergency_overrides')
    op.drop_table('medical_audit_logs')
