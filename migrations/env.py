"""Alembic migration environment.

Uses the engine and metadata of the devourer package so migrations run
against the same database the application does.
"""

from __future__ import annotations

from alembic import context
from sqlmodel import SQLModel

from devourer.database import get_engine

# Register every table on SQLModel.metadata
from devourer import models as _models  # noqa: F401

target_metadata = SQLModel.metadata


def run_migrations_online() -> None:
    """Run migrations with a real database connection."""
    with get_engine().connect() as conn:
        context.configure(
            connection=conn,
            target_metadata=target_metadata,
            render_as_batch=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    raise RuntimeError("Offline migration mode is not supported. Run without --sql.")
else:
    run_migrations_online()
