"""
Alembic environment for the dispatch store (async, SQLAlchemy ≥2.0).

The connection string comes from the same resolver the application uses
(``DATABASE_URL`` / ``DATABASE_PUBLIC_URL``), falling back to
``sqlalchemy.url`` in alembic.ini.

Autogenerate only compares ``dispatch_log``: the profile, pet, medication
and claim tables are mirrors of a schema owned by the main data layer.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from db.db import Base, _build_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

OWNED_TABLES = {"dispatch_log"}


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table":
        return name in OWNED_TABLES
    return True


def _database_url() -> str:
    try:
        return _build_url()
    except RuntimeError:
        url = config.get_main_option("sqlalchemy.url")
        if not url:
            raise
        return url


def _configure(**kwargs) -> None:
    conn = kwargs.get("connection")
    url = str(conn.engine.url) if conn is not None else kwargs["url"]
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(sync_conn) -> None:
    _configure(connection=sync_conn)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as conn:
            await conn.run_sync(_run_sync)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
