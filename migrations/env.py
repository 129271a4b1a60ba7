"""Alembic environment for the karma-node schema.

The database URL comes from ``ALEMBIC_URL`` when set, then from the config
passed in by ``karma_node.scripts.migrate``, then from ``DATABASE_URL`` via
settings. SQLite cannot ALTER most columns in place, so SQLite targets run
with batch rendering so later revisions can change the session and vote
tables without hand-written copy-and-swap steps.
"""
from __future__ import annotations

import os
import sys
from logging.config import fileConfig
from pathlib import Path
from typing import Any

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
for path in (PROJECT_ROOT, SRC_ROOT):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from karma_node.core.settings import settings  # noqa: E402
from karma_node.db.session import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    # Keep karma_node loggers alive when migrations run inside the app process.
    fileConfig(config.config_file_name, disable_existing_loggers=False)

alembic_url = os.getenv("ALEMBIC_URL")
if alembic_url:
    config.set_main_option("sqlalchemy.url", alembic_url)
elif not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", settings.database_url_sync)

target_metadata = Base.metadata


def include_object(obj, name, type_, reflected, compare_to):  # type: ignore[no-untyped-def]
    """Leave Alembic's version table and SQLite internals out of autogenerate."""
    if type_ == "table" and (name == "alembic_version" or name.startswith("sqlite_")):
        return False
    return True


def configure_options(url: str) -> dict[str, Any]:
    """Options shared by offline and online runs for the given database URL."""
    return {
        "target_metadata": target_metadata,
        "include_object": include_object,
        "render_as_batch": make_url(url).get_backend_name() == "sqlite",
        "compare_type": True,
    }


def run_migrations_offline() -> None:
    """Emit SQL for the karma-node schema without a live connection."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply revisions against the configured node database."""
    url = config.get_main_option("sqlalchemy.url")
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **configure_options(url))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
