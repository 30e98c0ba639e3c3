"""create_shadow_store_tables

Create the local fallback tables written when the adapter rejects a write
as unavailable: `shadow_projects`, `shadow_milestones`, `shadow_scope_comments`.

Revision ID: 5e1a7c20b9d4
Revises:
Create Date: 2026-10-17 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1a7c20b9d4"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "shadow_projects" not in existing_tables:
        op.create_table(
            "shadow_projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("external_id", sa.String(length=128), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=True),
            sa.Column("summary", sa.Text(), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("url", sa.String(length=500), nullable=True),
            sa.Column("budget", sa.String(length=50), nullable=True),
            sa.Column("delivery_time", sa.String(length=50), nullable=True),
            sa.Column("delivery_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("state", sa.String(length=40), nullable=True),
            sa.Column("client_id", sa.String(length=64), nullable=True),
            sa.Column("consultant_id", sa.String(length=64), nullable=True),
            sa.Column("proposal_rejection_reason", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shadow_projects_external_id", "shadow_projects", ["external_id"], unique=True)
        op.create_index("ix_shadow_projects_client_id", "shadow_projects", ["client_id"])
        op.create_index("ix_shadow_projects_consultant_id", "shadow_projects", ["consultant_id"])

    if "shadow_milestones" not in existing_tables:
        op.create_table(
            "shadow_milestones",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("external_id", sa.String(length=128), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("budget", sa.Float(), nullable=True),
            sa.Column("delivery_time", sa.String(length=50), nullable=True),
            sa.Column("delivery_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("state", sa.String(length=40), nullable=True),
            sa.Column("developer_id", sa.String(length=64), nullable=True),
            sa.Column("documentation", sa.Text(), nullable=True),
            sa.Column("links", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["shadow_projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "external_id", name="uq_shadow_milestones_project_external"),
        )
        op.create_index("ix_shadow_milestones_project_id", "shadow_milestones", ["project_id"])
        op.create_index("ix_shadow_milestones_external_id", "shadow_milestones", ["external_id"])

    if "shadow_scope_comments" not in existing_tables:
        op.create_table(
            "shadow_scope_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("consultant_comment", sa.Text(), nullable=True),
            sa.Column("client_response", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["shadow_projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shadow_scope_comments_project_id", "shadow_scope_comments", ["project_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "shadow_scope_comments" in existing_tables:
        op.drop_index("ix_shadow_scope_comments_project_id", table_name="shadow_scope_comments")
        op.drop_table("shadow_scope_comments")
    if "shadow_milestones" in existing_tables:
        op.drop_index("ix_shadow_milestones_external_id", table_name="shadow_milestones")
        op.drop_index("ix_shadow_milestones_project_id", table_name="shadow_milestones")
        op.drop_table("shadow_milestones")
    if "shadow_projects" in existing_tables:
        op.drop_index("ix_shadow_projects_consultant_id", table_name="shadow_projects")
        op.drop_index("ix_shadow_projects_client_id", table_name="shadow_projects")
        op.drop_index("ix_shadow_projects_external_id", table_name="shadow_projects")
        op.drop_table("shadow_projects")
