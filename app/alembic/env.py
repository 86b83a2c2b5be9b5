# Alembic environment for the CampusRent schema.
# Migrations target the same DATABASE_URL the API uses; SQLite dev databases get batch mode.
import os
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

# Importing models registers every table on Base.metadata for autogenerate
from app.db import Base
from app import models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """
    DATABASE_URL from environment (same variable the app reads), fallback to local SQLite.
    Examples:
      - sqlite:///./data.db
      - postgresql+psycopg://campusrent:campusrent@db:5432/campusrent
    """
    return os.getenv("DATABASE_URL", "sqlite:///./data.db")


def _compare_options() -> dict:
    # Column types and server defaults matter for the booking flags and version counter
    return {"compare_type": True, "compare_server_default": True}


def run_migrations_offline() -> None:
    """Emit SQL for review instead of executing it."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_compare_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_url()
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = url

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        future=True,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            # SQLite cannot ALTER most columns in place
            render_as_batch=url.startswith("sqlite"),
            **_compare_options(),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
