"""post-sale backfill jobs, items and customer view

Revision ID: 0002_backfill
Revises: 0001_notifyflow
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_backfill"
down_revision = "0001_notifyflow"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("first_order_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_customers"),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])

    op.create_table(
        "post_sale_backfill_jobs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("total_customers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_customers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_post_sale_backfill_jobs"),
    )
    op.create_index("ix_post_sale_backfill_jobs_tenant_id", "post_sale_backfill_jobs", ["tenant_id"])

    op.create_table(
        "post_sale_backfill_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(
            ["job_id"],
            ["post_sale_backfill_jobs.id"],
            name="fk_post_sale_backfill_items_job_id_post_sale_backfill_jobs",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_post_sale_backfill_items"),
    )
    op.create_index(
        "ix_backfill_items_status_scheduled_for",
        "post_sale_backfill_items",
        ["status", "scheduled_for"],
    )
    op.create_index("ix_backfill_items_job_status", "post_sale_backfill_items", ["job_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_backfill_items_job_status", table_name="post_sale_backfill_items")
    op.drop_index("ix_backfill_items_status_scheduled_for", table_name="post_sale_backfill_items")
    op.drop_table("post_sale_backfill_items")
    op.drop_index("ix_post_sale_backfill_jobs_tenant_id", table_name="post_sale_backfill_jobs")
    op.drop_table("post_sale_backfill_jobs")
    op.drop_index("ix_customers_tenant_id", table_name="customers")
    op.drop_table("customers")
