from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context

from haulops.config import get_settings
from haulops.db import Base
from haulops import models  # noqa: F401  registers tables on Base.metadata

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

# Versions are written by hand; metadata is only used by `alembic check`/autogenerate diffs.
target_metadata = Base.metadata

def _normalize_url(url: str) -> str:
    u = url.strip()
    if u.startswith("postgres://"):
        u = "postgresql+psycopg2://" + u[len("postgres://"):]
    return u

def get_url() -> str:
    # Settings read DATABASE_URL from the environment or .env; alembic.ini is the last resort.
    url = get_settings().DATABASE_URL or config.get_main_option("sqlalchemy.url")
    if not url or not url.strip():
        raise SystemExit("DATABASE_URL is not set. Export it or put sqlalchemy.url in alembic.ini.")
    return _normalize_url(url)

def run_migrations_offline() -> None:
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online() -> None:
    connectable = engine_from_config(
        {"url": get_url()},
        prefix="",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata,
                          render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
