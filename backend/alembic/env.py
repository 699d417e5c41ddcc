"""
Alembic environment for the seats table.

The database URL comes from DATABASE_URL_SYNC (alembic runs on a sync
driver). SQLite URLs get batch mode so column changes become table copies.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from seatlock.core.config import get_settings
from seatlock.db.base import Base
from seatlock.models.seat import SeatRecord  # noqa: F401 - registers the seats table

config = context.config
config.set_main_option("sqlalchemy.url", get_settings().DATABASE_URL_SYNC)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _options(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Emit the migration as SQL instead of running it."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_options(str(connectable.url)))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
