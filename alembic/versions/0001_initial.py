"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _created():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "services",
        _id(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("duration_min", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
    )

    op.create_table(
        "availability_rules",
        _id(),
        sa.Column("resource_id", sa.String(length=36), nullable=True),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
    )
    op.create_index("ix_availability_rules_resource_id", "availability_rules", ["resource_id"])
    op.create_index("ix_availability_rules_day_of_week", "availability_rules", ["day_of_week"])

    op.create_table(
        "time_off",
        _id(),
        sa.Column("resource_id", sa.String(length=36), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        _created(),
    )
    op.create_index("ix_time_off_resource_id", "time_off", ["resource_id"])
    op.create_index("ix_time_off_start_at", "time_off", ["start_at"])
    op.create_index("ix_time_off_end_at", "time_off", ["end_at"])

    op.create_table(
        "instructors",
        _id(),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("display_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("can_teach", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notes", sa.String(length=500), nullable=True),
        _created(),
    )
    op.create_index("ix_instructors_user_id", "instructors", ["user_id"])

    op.create_table(
        "instructor_availability",
        _id(),
        sa.Column("instructor_id", sa.String(length=36), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        _created(),
    )
    op.create_index("ix_instructor_availability_instructor_id", "instructor_availability", ["instructor_id"])
    op.create_index("ix_instructor_availability_day_of_week", "instructor_availability", ["day_of_week"])

    op.create_table(
        "trucks",
        _id(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("license_plate", sa.String(length=20), nullable=True),
        sa.Column("truck_type", sa.String(length=40), nullable=False, server_default="class_a"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created(),
    )

    op.create_table(
        "training_modules",
        _id(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("module_type", sa.String(length=12), nullable=False),
        sa.Column("duration_min", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("requires_truck", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("requires_instructor", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("fixed_start_time", sa.String(length=5), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        _created(),
    )
    op.create_index("ix_training_modules_module_type", "training_modules", ["module_type"])

    op.create_table(
        "training_sessions",
        _id(),
        sa.Column("module_id", sa.String(length=36), nullable=False),
        sa.Column("instructor_id", sa.String(length=36), nullable=True),
        sa.Column("truck_id", sa.String(length=36), nullable=True),
        sa.Column("session_date", sa.String(length=10), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("session_type", sa.String(length=10), nullable=False, server_default="private"),
        sa.Column("max_capacity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_fixed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="open"),
        sa.Column("notes", sa.String(length=500), nullable=True),
        _created(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("module_id", "session_date", "start_time", name="uq_training_session_module_date_start"),
    )
    op.create_index("ix_training_sessions_module_id", "training_sessions", ["module_id"])
    op.create_index("ix_training_sessions_instructor_id", "training_sessions", ["instructor_id"])
    op.create_index("ix_training_sessions_truck_id", "training_sessions", ["truck_id"])
    op.create_index("ix_training_sessions_session_date", "training_sessions", ["session_date"])

    op.create_table(
        "enrollments",
        _id(),
        sa.Column("student_id", sa.String(length=36), nullable=False),
        sa.Column("program_name", sa.String(length=120), nullable=False, server_default="CDL Class A"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created(),
    )
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"])

    op.create_table(
        "bookings",
        _id(),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("product_line", sa.String(length=8), nullable=False, server_default="shop"),
        sa.Column("service_id", sa.String(length=36), nullable=True),
        sa.Column("resource_id", sa.String(length=36), nullable=True),
        sa.Column("module_id", sa.String(length=36), nullable=True),
        sa.Column("session_id", sa.String(length=36), nullable=True),
        sa.Column("instructor_id", sa.String(length=36), nullable=True),
        sa.Column("truck_id", sa.String(length=36), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="requested"),
        sa.Column("payment_method", sa.String(length=8), nullable=False, server_default="card"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("payment_ref", sa.String(length=120), nullable=True),
        sa.Column("setup_ref", sa.String(length=120), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("customer_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("customer_email", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("customer_phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
        _created(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    for col in ("client_id", "service_id", "resource_id", "module_id", "session_id",
                "instructor_id", "truck_id", "status"):
        op.create_index(f"ix_bookings_{col}", "bookings", [col])
    op.create_index("ix_bookings_line_start_end", "bookings", ["product_line", "start_at", "end_at"])

    op.create_table(
        "audit_logs",
        _id(),
        sa.Column("actor_user_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        _created(),
    )
    for col in ("actor_user_id", "action", "entity_type", "entity_id"):
        op.create_index(f"ix_audit_logs_{col}", "audit_logs", [col])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=80), primary_key=True),
        sa.Column("int_value", sa.Integer(), nullable=True),
        sa.Column("str_value", sa.String(length=255), nullable=True),
        _created(),
    )


def downgrade() -> None:
    for table in ("settings", "audit_logs", "bookings", "enrollments", "training_sessions", "training_modules",
                  "trucks", "instructor_availability", "instructors", "time_off", "availability_rules",
                  "services", "users"):
        op.drop_table(table)
