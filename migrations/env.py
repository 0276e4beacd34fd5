"""Alembic environment: runs migrations online against ``database_url_sync``."""

import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool

# Add the project root to the path
sys.path.append(str(Path(__file__).parent.parent))

from concierge.config import settings  # noqa: E402
from concierge.infrastructure import models  # noqa: E402,F401  (registers tables)
from concierge.infrastructure.database import Base  # noqa: E402

target_metadata = Base.metadata

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations_online():
    connectable = create_engine(settings.database_url_sync, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


run_migrations_online()
