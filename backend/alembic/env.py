"""
Alembic environment for the waiting room schema.

The target URL comes from `-x url=...`, then sqlalchemy.url in the config,
then DATABASE_URL_SYNC. SQLite runs in batch mode so ALTERs are emulated.
"""

from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context

from waitroom.db.base import Base
from waitroom.models import TicketPool, WaitingListEntry, CartItem  # noqa: F401 - register tables
from waitroom.core.config import get_settings

config = context.config
target_metadata = Base.metadata

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def resolve_url() -> str:
    return (
        context.get_x_argument(as_dictionary=True).get("url")
        or config.get_main_option("sqlalchemy.url")
        or get_settings().DATABASE_URL_SYNC
    )


def run_migrations_offline() -> None:
    url = resolve_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = resolve_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
