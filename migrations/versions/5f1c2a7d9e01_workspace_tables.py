"""workspace_tables

Create `workspaces`, `uploaded_items` and `generated_specs` for the
documentation workbench.

Revision ID: 5f1c2a7d9e01
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5f1c2a7d9e01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "workspaces" not in existing_tables:
        op.create_table(
            "workspaces",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("expanded_node_ids_json", sa.Text(), nullable=True),
            sa.Column("next_seq", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "uploaded_items" not in existing_tables:
        op.create_table(
            "uploaded_items",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("workspace_id", sa.Integer(), nullable=False),
            sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("path", sa.String(length=1024), nullable=False),
            sa.Column("size", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("category", sa.String(length=30), nullable=False, server_default="Main Logic"),
            sa.Column("content", sa.Text(), nullable=True),
            sa.Column("source", sa.String(length=20), nullable=False, server_default="upload"),
            sa.Column("archive_name", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_uploaded_items_workspace_id", "uploaded_items", ["workspace_id"])

    if "generated_specs" not in existing_tables:
        op.create_table(
            "generated_specs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workspace_id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("scope_label", sa.String(length=255), nullable=True),
            sa.Column("node_id", sa.String(length=255), nullable=True),
            sa.Column("markdown", sa.Text(), nullable=False),
            sa.Column("model", sa.String(length=80), nullable=True),
            sa.Column("provider", sa.String(length=30), nullable=True),
            sa.Column("prompt_tokens", sa.Integer(), nullable=True),
            sa.Column("completion_tokens", sa.Integer(), nullable=True),
            sa.Column("latency_ms", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_generated_specs_workspace_id", "generated_specs", ["workspace_id"])


def downgrade():
    existing_tables = set(sa_inspect(op.get_bind()).get_table_names())

    if "generated_specs" in existing_tables:
        op.drop_index("ix_generated_specs_workspace_id", table_name="generated_specs")
        op.drop_table("generated_specs")
    if "uploaded_items" in existing_tables:
        op.drop_index("ix_uploaded_items_workspace_id", table_name="uploaded_items")
        op.drop_table("uploaded_items")
    if "workspaces" in existing_tables:
        op.drop_table("workspaces")
