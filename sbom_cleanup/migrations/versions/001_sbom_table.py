"""create sbom_table

Revision ID: 001_sbom_table
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_sbom_table"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    # Existing deployments already own the table.
    if "sbom_table" in tables:
        return

    op.create_table(
        "sbom_table",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("collection_id", sa.String(length=255), nullable=False),
        sa.Column("project_id", sa.String(length=255), nullable=False),
        sa.Column("build_number", sa.String(length=255), nullable=False),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("collection_id", "project_id", "build_number", name="uq_sbom_identity"),
    )
    op.create_index("ix_sbom_table_archived", "sbom_table", ["archived"])
    op.create_index(
        "uq_sbom_live_project",
        "sbom_table",
        ["collection_id", "project_id"],
        unique=True,
        postgresql_where=sa.text("archived = false"),
        sqlite_where=sa.text("archived = 0"),
    )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()
    if "sbom_table" in tables:
        op.drop_table("sbom_table")
