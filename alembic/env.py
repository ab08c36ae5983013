from alembic import context
from sqlalchemy import create_engine

from token_guardian.db.db_config import Base, get_production_config, import_all_models

import_all_models()

config = context.config


def _url() -> str:
    return config.get_main_option("sqlalchemy.url") or get_production_config().get_connection_string()


def run_migrations_offline():
    context.configure(url=_url(), target_metadata=Base.metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = create_engine(_url())
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=Base.metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
