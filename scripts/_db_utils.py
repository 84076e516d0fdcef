from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """
    One-shot session for release/seed scripts, independent of the Flask app.
    Commits when the block exits cleanly, rolls back on error.
    """
    engine = create_engine(db_url, poolclass=NullPool)
    try:
        with Session(engine, expire_on_commit=False) as s, s.begin():
            yield s
    finally:
        engine.dispose()
