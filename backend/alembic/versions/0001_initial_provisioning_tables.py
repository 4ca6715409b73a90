"""Initial provisioning tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa

SITE_STATUS = sa.Enum("PENDING", "IN_PROGRESS", "COMPLETED", "FAILED", name="sitestatus")
STEP_TYPE = sa.Enum(
    "PRE_INSTALLATION", "CPANEL_ENTRY", "CLOUDFLARE_ENTRY", "DIRECTORY_SETUP", "DB_CREATION",
    name="steptype",
)
STEP_STATUS = sa.Enum("PENDING", "IN_PROGRESS", "SUCCESS", "FAILED", name="stepstatus")
RUN_STATUS = sa.Enum("RUNNING", "SUCCEEDED", "FAILED", "EXPIRED", name="runstatus")


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("domain", sa.String(255)),
        sa.Column("status", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "entity_meta",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("rel_id", sa.Integer(), nullable=False),
        sa.Column("rel_type", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("value", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("rel_id", "rel_type", "name", name="uq_entity_meta_rel_name"),
    )
    op.create_index("ix_entity_meta_rel_id", "entity_meta", ["rel_id"])

    op.create_table(
        "sites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id")),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("domain", sa.String(255)),
        sa.Column("status", SITE_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("installer_site_id", sa.String(100), unique=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_sites_project_id", "sites", ["project_id"])
    op.create_index("ix_sites_domain", "sites", ["domain"])

    op.create_table(
        "install_steps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "site_id", sa.Integer(),
            sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("step_type", STEP_TYPE, nullable=False),
        sa.Column("status", STEP_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("step_data", sa.JSON()),
        sa.Column("error_msg", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "step_type", name="uq_install_steps_site_type"),
    )
    op.create_index("ix_install_steps_site_id", "install_steps", ["site_id"])

    op.create_table(
        "step_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "step_id", sa.Integer(),
            sa.ForeignKey("install_steps.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", RUN_STATUS, nullable=False, server_default="RUNNING"),
        sa.Column("started_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("heartbeat_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime()),
        sa.Column("error_msg", sa.Text()),
    )
    op.create_index("ix_step_runs_step_id", "step_runs", ["step_id"])
    op.create_index("ix_step_runs_status", "step_runs", ["status"])


def downgrade() -> None:
    op.drop_table("step_runs")
    op.drop_table("install_steps")
    op.drop_table("sites")
    op.drop_table("entity_meta")
    op.drop_table("clients")
    op.drop_table("projects")
    for enum_type in (RUN_STATUS, STEP_STATUS, STEP_TYPE, SITE_STATUS):
        enum_type.drop(op.get_bind(), checkfirst=True)
