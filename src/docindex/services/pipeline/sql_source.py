from __future__ import annotations

from collections.abc import Iterator, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection

from docindex.services.pipeline.types import SourceRow

REQUIRED_COLUMNS = ("id", "title", "text")


class MissingColumnsError(ValueError):
    def __init__(self, missing: Sequence[str], available: Sequence[str]) -> None:
        super().__init__(
            f"query result is missing required columns {list(missing)} "
            f"(available: {list(available)})"
        )
        self.missing = tuple(missing)


def query_rows(
    connection: Connection,
    sql: str,
    *,
    required_columns: Sequence[str] = REQUIRED_COLUMNS,
) -> Iterator[SourceRow]:
    result = connection.execution_options(stream_results=True).execute(text(sql))
    try:
        columns = list(result.keys())
        missing = [column for column in required_columns if column not in columns]
        if missing:
            raise MissingColumnsError(missing, columns)

        for row in result.mappings():
            yield row
    finally:
        result.close()
