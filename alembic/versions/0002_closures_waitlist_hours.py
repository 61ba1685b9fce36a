"""per-line closures, waitlist and training hour logs

Revision ID: 0002_closures_waitlist_hours
Revises: 0001_initial
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0002_closures_waitlist_hours"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("time_off") as batch:
        batch.add_column(sa.Column("product_line", sa.String(length=10), nullable=False, server_default="shop"))
    op.create_index("ix_time_off_product_line", "time_off", ["product_line"])

    with op.batch_alter_table("bookings") as batch:
        batch.add_column(sa.Column("hours_logged", sa.Float(), nullable=True))

    with op.batch_alter_table("settings") as batch:
        batch.add_column(sa.Column("updated_by", sa.String(length=36), nullable=True))
        batch.add_column(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))

    op.create_table(
        "waitlist_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("product_line", sa.String(length=10), nullable=False, server_default="shop"),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("service_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="waiting"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("client_id", "product_line", "date", name="uq_waitlist_client_line_date"),
    )
    op.create_index("ix_waitlist_entries_client_id", "waitlist_entries", ["client_id"])
    op.create_index("ix_waitlist_entries_date", "waitlist_entries", ["date"])

    op.create_table(
        "hour_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("student_id", sa.String(length=36), nullable=False),
        sa.Column("enrollment_id", sa.String(length=36), nullable=True),
        sa.Column("module_id", sa.String(length=36), nullable=True),
        sa.Column("session_date", sa.String(length=10), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("logged_by", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    for col in ("booking_id", "student_id", "enrollment_id"):
        op.create_index(f"ix_hour_logs_{col}", "hour_logs", [col])


def downgrade() -> None:
    op.drop_table("hour_logs")
    op.drop_table("waitlist_entries")
    with op.batch_alter_table("settings") as batch:
        batch.drop_column("updated_at")
        batch.drop_column("updated_by")
    with op.batch_alter_table("bookings") as batch:
        batch.drop_column("hours_logged")
    op.drop_index("ix_time_off_product_line", table_name="time_off")
    with op.batch_alter_table("time_off") as batch:
        batch.drop_column("product_line")
