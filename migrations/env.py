"""Alembic environment for the messages and admin_users schema.

Run through `chat_escrow.scripts.upgrade_db`, which supplies the script
location and database URL in code; there is no alembic.ini.
"""
from __future__ import annotations

from alembic import context
from sqlalchemy import engine_from_config, pool

from chat_escrow.core.settings import settings
from chat_escrow.db.session import Base
from chat_escrow.models import AdminUser, Message  # noqa: F401  registers tables

config = context.config

if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", settings.database_url_sync)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
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
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
