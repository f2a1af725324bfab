from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

from erpcore.domain import models  # noqa: F401
from erpcore.infra.db import DATABASE_URL
from erpcore.infra.logging import get_logger

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = get_logger("erpcore.migrations")

target_metadata = SQLModel.metadata

# DATABASE_URL overrides the url in alembic.ini.
config.set_main_option("sqlalchemy.url", DATABASE_URL)


def run_migrations_offline() -> None:
    logger.info("migrations_offline", tables=sorted(target_metadata.tables))
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
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
