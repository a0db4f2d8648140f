import logging
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# `alembic upgrade head` also runs standalone, outside the app process
load_dotenv()


def get_database_url() -> str:
    """sqlite URL for the file the app uses; DATABASE_PATH overrides alembic.ini."""
    database_path = os.getenv("DATABASE_PATH")
    if database_path:
        return f"sqlite:///{database_path}"
    return config.get_main_option("sqlalchemy.url")


def run_migrations_offline(url: str) -> None:
    # Migrations are raw SQL, so there is no metadata to compare against
    context.configure(url=url, target_metadata=None, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online(url: str) -> None:
    connectable = create_engine(url)
    with connectable.connect() as connection:
        # Batch mode lets ALTER TABLE work on sqlite
        context.configure(connection=connection, target_metadata=None, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


database_url = get_database_url()
logger.info("Migrating %s", database_url)

if context.is_offline_mode():
    run_migrations_offline(database_url)
else:
    run_migrations_online(database_url)
