"""Alembic environment for the formchat schema.

Migrations run synchronously on psycopg2 against ``get_sync_url()``.  The
URL is handed to SQLAlchemy directly rather than written back into the ini
config, where ``%`` in a password would be read as interpolation.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from formchat_db.config import get_sync_url
from formchat_db.models.base import Base

# Registers forms, form_fields, form_responses and form_response_values on Base.metadata
import formchat_db.models.form  # noqa: F401
import formchat_db.models.session  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_CONFIGURE_OPTS = {
    "target_metadata": target_metadata,
    # JSONB/TIMESTAMPTZ changes and server defaults show up in autogenerate
    "compare_type": True,
    "compare_server_default": True,
}


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout without a database connection."""
    context.configure(
        url=get_sync_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_CONFIGURE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Connect and apply pending revisions in one transaction."""
    engine = create_engine(get_sync_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_CONFIGURE_OPTS)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
