"""
Migration environment for the Claw4Growth platform.

The application talks to the database through async drivers; migrations use
the matching sync driver. Pass ``-x db_url=...`` to migrate another database
than the one DATABASE_URL points at.
"""

from logging.config import fileConfig
import os
import sys

from sqlalchemy import create_engine, pool
from sqlalchemy.engine import URL, make_url

from alembic import context

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from c4g.config import get_settings  # noqa: E402
from c4g.db.models import Base  # noqa: E402

SYNC_DRIVERS = {
    "postgresql+asyncpg": "postgresql+psycopg2",
    "sqlite+aiosqlite": "sqlite",
}

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)


def migration_url() -> URL:
    """The target database URL, rewritten for a sync driver."""
    raw = context.get_x_argument(as_dictionary=True).get("db_url") or get_settings().DATABASE_URL
    url = make_url(raw)
    return url.set(drivername=SYNC_DRIVERS.get(url.drivername, url.drivername))


def _options(url: URL) -> dict:
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        "compare_server_default": True,
        # SQLite cannot ALTER most constraints in place
        "render_as_batch": url.get_backend_name() == "sqlite",
    }


def migrate_offline(url: URL) -> None:
    """Emit the migration SQL to stdout instead of executing it."""
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online(url: URL) -> None:
    engine = create_engine(url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_options(url))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    migrate_offline(migration_url())
else:
    migrate_online(migration_url())
