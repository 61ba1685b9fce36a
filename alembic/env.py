import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, create_engine

from slotbook.core.config import settings
from slotbook.db.session import Base

# Import all models so Alembic sees them in metadata
from slotbook.models.user import User  # noqa: F401
from slotbook.models.service import Service  # noqa: F401
from slotbook.models.availability_rule import AvailabilityRule  # noqa: F401
from slotbook.models.time_off import TimeOff  # noqa: F401
from slotbook.models.instructor import Instructor, InstructorAvailability  # noqa: F401
from slotbook.models.truck import Truck  # noqa: F401
from slotbook.models.training_module import TrainingModule  # noqa: F401
from slotbook.models.training_session import TrainingSession  # noqa: F401
from slotbook.models.enrollment import Enrollment  # noqa: F401
from slotbook.models.booking import Booking  # noqa: F401
from slotbook.models.audit_log import AuditLog  # noqa: F401
from slotbook.models.setting import Setting  # noqa: F401
from slotbook.models.waitlist_entry import WaitlistEntry  # noqa: F401
from slotbook.models.hour_log import HourLog  # noqa: F401

config = context.config

# sqlalchemy.url always comes from the runtime DATABASE_URL, never alembic.ini
db_url = getattr(settings, "DATABASE_URL", None) or os.getenv("DATABASE_URL")
if not db_url:
    raise RuntimeError("DATABASE_URL is not set (check .env / slotbook.core.config.settings)")

config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
