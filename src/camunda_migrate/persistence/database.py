"""Database engine and session handling."""

from contextlib import contextmanager
from typing import Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.logging import get_logger

_engines: Dict[str, Engine] = {}


def get_engine(database_url: str, echo: bool = False) -> Engine:
    """Return the engine for a URL, creating it on first use.

    In-memory SQLite databases share a single connection so every session
    sees the same data.
    """
    engine = _engines.get(database_url)
    if engine is None:
        kwargs = {'echo': echo}
        if database_url.startswith('sqlite'):
            kwargs['connect_args'] = {'check_same_thread': False}
            if database_url in ('sqlite://', 'sqlite:///:memory:'):
                kwargs['poolclass'] = StaticPool
        engine = create_engine(database_url, **kwargs)
        _engines[database_url] = engine
        get_logger('Database').debug(f'Created engine for {engine.url!r}')
    return engine


def dispose_engine(database_url: str) -> None:
    """Close all pooled connections for a URL and forget the engine."""
    engine = _engines.pop(database_url, None)
    if engine is not None:
        engine.dispose()


@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Provide a transactional session scope.

    Commits on success and rolls back on any exception.
    """
    session = sessionmaker(bind=engine)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
