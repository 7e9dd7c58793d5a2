"""Alembic environment for the user directory schema.

At start-up the service hands over an open connection through
``config.attributes["connection"]``. Run from the ``alembic`` command line,
the connection string comes from ``DATABASE_URL`` instead.
"""
from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from userservice.config import load_settings
from userservice.database import Base, resolve_database_url

config = context.config
target_metadata = Base.metadata

if config.config_file_name is not None and "connection" not in config.attributes:
    fileConfig(config.config_file_name)


def _record_revision(*, ctx, step, heads, run_args, **kwargs) -> None:
    completed = config.attributes.get("completed")
    if completed is not None and step.is_upgrade:
        completed.append(step.up_revision_id)


def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or resolve_database_url(
        load_settings().database_url
    )


def run_migrations_offline() -> None:
    context.configure(url=_database_url(), target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = config.attributes.get("connection")
    if connection is not None:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            on_version_apply=_record_revision,
        )
        with context.begin_transaction():
            context.run_migrations()
        return

    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as conn:
        context.configure(connection=conn, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
