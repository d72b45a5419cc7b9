import os
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

# Model metadata for autogenerate: users, farmhouses, price_options, bookings
from farmstay.db import Base  # noqa: F401
from farmstay import models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """
    Same DATABASE_URL the application uses, e.g.:
      - sqlite:///./data.db
      - postgresql+psycopg://farmstay:farmstay@db:5432/farmstay
    """
    return os.getenv("DATABASE_URL", "sqlite:///./data.db")


def _configure_kwargs() -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        # SQLite cannot ALTER most columns in place
        "render_as_batch": get_url().startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    context.configure(
        url=get_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()
    connectable = engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool, future=True)

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs())
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
