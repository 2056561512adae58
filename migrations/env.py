import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

config = context.config

fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')


def get_database_url():
    """Get database URL from the Flask app's engine, falling back to DATABASE_URL"""
    try:
        from flask import current_app
        engine = current_app.extensions['migrate'].db.engine
        return engine.url.render_as_string(hide_password=False).replace('%', '%%')
    except (RuntimeError, KeyError):
        pass

    url = os.environ.get('PROD_DATABASE_URL') or os.environ.get('DATABASE_URL')
    if url:
        return url.replace('%', '%%')

    raise RuntimeError("No database URL found. Set DATABASE_URL or run through `flask db`.")


def get_target_metadata():
    """Get SQLAlchemy metadata for migrations"""
    try:
        from flask import current_app
        target_db = current_app.extensions['migrate'].db
    except (RuntimeError, KeyError):
        from app import db as target_db
        import models  # noqa: F401

    if hasattr(target_db, 'metadatas'):
        return target_db.metadatas[None]
    return target_db.metadata


config.set_main_option('sqlalchemy.url', get_database_url())
target_metadata = get_target_metadata()


def run_migrations_offline():
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    """Run migrations in 'online' mode."""

    def process_revision_directives(context, revision, directives):
        if getattr(config.cmd_opts, 'autogenerate', False):
            script = directives[0]
            if script.upgrade_ops.is_empty():
                directives[:] = []
                logger.info('No changes in schema detected.')

    conf_args = {
        "process_revision_directives": process_revision_directives
    }

    try:
        from flask import current_app
        migrate_conf = current_app.extensions.get('migrate')
        if migrate_conf is not None:
            conf_args.update(migrate_conf.configure_args)
    except RuntimeError:
        pass

    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix='sqlalchemy.',
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == 'sqlite',
            **conf_args
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
