import logging
import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

# Make the portfolio_guard package importable when running from the repo root
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from portfolio_guard.core.database import Base
from portfolio_guard.models import (  # noqa: F401
    ApiKey,
    ApiKeyLog,
    TurnstileAnalytics,
    TurnstileLog,
    TurnstileSiteKey,
    User,
)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def get_database_url() -> str:
    """Get the database URL, converting postgres:// to postgresql+psycopg2:// if needed."""
    database_url = os.getenv("DATABASE_URL")

    if not database_url:
        from portfolio_guard.core.config import get_settings
        database_url = get_settings().sqlalchemy_database_uri

    # Hosted Postgres providers hand out postgres:// URLs
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+psycopg2://", 1)
        logger.info("Converted postgres:// to postgresql+psycopg2://")

    if database_url.startswith("postgresql") and "sslmode" not in database_url and os.getenv("DATABASE_URL"):
        separator = "&" if "?" in database_url else "?"
        database_url = f"{database_url}{separator}sslmode=require"
        logger.info("Added sslmode=require for PostgreSQL connection")

    return database_url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without a DBAPI connection)."""
    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a live connection."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = get_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
