"""Create workflow tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

Creates the following tables:
- workflow_requests: Approval requests with JSONB steps, timeline and escalation
- delegate_settings: Standing approval delegations, one per user
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ========================================
    # 1. workflow_requests table
    # ========================================
    op.create_table(
        "workflow_requests",
        sa.Column("id", sa.String(64), nullable=False),
        # Request info
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("requester_id", sa.String(64), nullable=False),
        sa.Column("requester_name", sa.String(120), nullable=False),
        sa.Column("department", sa.String(120), nullable=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("details", JSONB(), nullable=False, server_default="{}"),
        sa.Column("attachments", JSONB(), nullable=False, server_default="[]"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        # Routing
        sa.Column("flow_id", sa.String(64), nullable=True),
        sa.Column("flow_name", sa.String(200), nullable=True),
        sa.Column("approval_steps", JSONB(), nullable=False, server_default="[]"),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalation", JSONB(), nullable=True),
        # Status
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("action_required", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("action_required_reason", sa.Text(), nullable=True),
        sa.Column("timeline", JSONB(), nullable=False, server_default="[]"),
        # Lifecycle timestamps
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_by", sa.String(120), nullable=True),
        sa.Column("return_reason", sa.Text(), nullable=True),
        # Optimistic concurrency
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('draft', 'pending', 'partially_approved', 'escalated', "
            "'returned', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_requests_status",
        ),
        sa.CheckConstraint("version >= 1", name="ck_workflow_requests_version"),
    )
    op.create_index("ix_workflow_requests_category", "workflow_requests", ["category"])
    op.create_index("ix_workflow_requests_requester_id", "workflow_requests", ["requester_id"])
    op.create_index("ix_workflow_requests_status", "workflow_requests", ["status"])
    op.create_index(
        "ix_workflow_requests_status_category",
        "workflow_requests",
        ["status", "category"],
    )

    # ========================================
    # 2. delegate_settings table
    # ========================================
    op.create_table(
        "delegate_settings",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("delegate_to_id", sa.String(64), nullable=False),
        sa.Column("delegate_name", sa.String(120), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("user_id"),
        sa.CheckConstraint("end_date >= start_date", name="ck_delegate_settings_window"),
    )
    op.create_index(
        "ix_delegate_settings_delegate_to_id", "delegate_settings", ["delegate_to_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_delegate_settings_delegate_to_id", table_name="delegate_settings")
    op.drop_table("delegate_settings")

    op.drop_index("ix_workflow_requests_status_category", table_name="workflow_requests")
    op.drop_index("ix_workflow_requests_status", table_name="workflow_requests")
    op.drop_index("ix_workflow_requests_requester_id", table_name="workflow_requests")
    op.drop_index("ix_workflow_requests_category", table_name="workflow_requests")
    op.drop_table("workflow_requests")
