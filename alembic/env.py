"""
Alembic environment for the integration tables.

Migrations must run on SQLite (default single-node install) and PostgreSQL.
SQLite cannot ALTER most column properties, so batch mode is enabled there,
and SQLModel's AutoString is rendered as a plain sa.String.
"""
from logging.config import fileConfig

from alembic import context
from alembic.autogenerate import renderers
from alembic.autogenerate.api import AutogenContext
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url
from sqlmodel import SQLModel
from sqlmodel.sql.sqltypes import AutoString

import app.models  # noqa: F401  (register tables on the metadata)
from app.core.config import settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = SQLModel.metadata


@renderers.dispatch_for(AutoString)
def _render_auto_string(type_: AutoString, autogen_context: AutogenContext) -> str:
    autogen_context.imports.add("import sqlalchemy as sa")
    length = getattr(type_, "length", None)
    return f"sa.String(length={length})" if length else "sa.String()"


def get_url() -> str:
    """URL passed by init_db wins; otherwise the settings hierarchy (POSTGRES_* then DATABASE_URL)."""
    return config.get_main_option("sqlalchemy.url") or settings.effective_database_url


def _configure_kwargs(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": make_url(url).get_backend_name() == "sqlite",
    }


def run_migrations_offline() -> None:
    url = get_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_url()
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = url
    connectable = engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
