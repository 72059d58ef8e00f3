import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import get_settings  # noqa: E402
from database import Base, build_engine  # noqa: E402
import models  # noqa: E402,F401

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

logger = logging.getLogger("alembic.env")

DATABASE_URL = get_settings().database_url


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most constraints in place, so rebuild tables in batch mode.
    context.configure(
        target_metadata=Base.metadata,
        render_as_batch=DATABASE_URL.startswith("sqlite"),
        compare_type=True,
        **kwargs,
    )


def run_offline() -> None:
    _configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = build_engine(DATABASE_URL)
    try:
        with engine.connect() as connection:
            _configure(connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


logger.info("alembic: url=%s offline=%s", DATABASE_URL.split("://")[0], context.is_offline_mode())
if context.is_offline_mode():
    run_offline()
else:
    run_online()
