from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine


def create_source_engine(database_url: str, *, echo: bool = False) -> Engine:
    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
    )


@contextmanager
def relational_connection(engine: Engine) -> Iterator[Connection]:
    """Hold one connection for the relational phase and always release it.

    The engine is disposed on exit as well, so no pooled connection outlives
    the phase regardless of how iteration ended.
    """
    try:
        with engine.connect() as connection:
            yield connection
    finally:
        engine.dispose()
