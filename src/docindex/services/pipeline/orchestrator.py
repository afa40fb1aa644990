from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager, closing
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from time import perf_counter

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from docindex.services.pipeline.batch import BatchBuffer, IndexFlushError
from docindex.services.pipeline.extractor import ExtractionError, Extractor
from docindex.services.pipeline.mapper import document_from_extraction, document_from_row
from docindex.services.pipeline.sql_source import MissingColumnsError, query_rows
from docindex.services.pipeline.types import (
    ExtractionResult,
    InvalidDocumentError,
    RunStatistics,
    WalkFailure,
)
from docindex.services.pipeline.walker import walk


class RunState(Enum):
    IDLE = "idle"
    RUNNING_FILESYSTEM = "running_filesystem"
    RUNNING_RELATIONAL = "running_relational"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass(frozen=True)
class RelationalSource:
    connect: Callable[[], AbstractContextManager[Connection]]
    sql: str


def dump_metadata(file_id: str, metadata: dict[str, str]) -> None:
    print(f"Dumping metadata for file: {file_id}", flush=True)
    for name, value in metadata.items():
        print(f"{name}:{value}", flush=True)
    print("", flush=True)


class IngestionRun:
    """One ingestion pass: filesystem phase, relational phase, then finalize.

    The run owns its statistics and drives the shared ``BatchBuffer``; it is
    single use and refuses a second ``run()``.
    """

    def __init__(
        self,
        buffer: BatchBuffer,
        *,
        extractor: Extractor,
        root_dir: Path | None = None,
        relational: RelationalSource | None = None,
        dump_metadata: bool = False,
    ) -> None:
        self._buffer = buffer
        self._extractor = extractor
        self._root_dir = root_dir
        self._relational = relational
        self._dump_metadata = dump_metadata
        self.state = RunState.IDLE
        self.stats = RunStatistics()

    def run(self) -> RunStatistics:
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"ingestion run is not reusable (state={self.state.value})")

        start = perf_counter()
        # First error that fails the run; raised only after finalize.
        run_error: Exception | None = None

        self.state = RunState.RUNNING_FILESYSTEM
        if self._root_dir is not None:
            try:
                self._ingest_filesystem(self._root_dir)
            except IndexFlushError as exc:
                print(f"[docindex] filesystem phase aborted error={exc}", flush=True)
                run_error = exc

        self.state = RunState.RUNNING_RELATIONAL
        if self._relational is not None:
            try:
                self._ingest_relational(self._relational)
            except (MissingColumnsError, IndexFlushError) as exc:
                print(f"[docindex] relational phase aborted error={exc}", flush=True)
                self.stats.relational_error = str(exc)
                run_error = run_error or exc

        self.state = RunState.FINALIZING
        try:
            self._buffer.finalize()
        except IndexFlushError as exc:
            run_error = run_error or exc
        finally:
            self.stats.elapsed_ms = int((perf_counter() - start) * 1000)
            self.state = RunState.DONE

        if run_error is not None:
            raise run_error
        return self.stats

    def _ingest_filesystem(self, root_dir: Path) -> None:
        for item in walk(root_dir):
            if isinstance(item, WalkFailure):
                self.stats.walk_failures += 1
                print(
                    f"[docindex] directory skipped path={item.path} error={item.error}",
                    flush=True,
                )
                continue

            file_id = str(item.resolve())
            try:
                result = self._extract_file(item, file_id)
            except ExtractionError as exc:
                self.stats.failed_files += 1
                print(f"[docindex] file failed path={file_id} error={exc.reason}", flush=True)
                continue

            if self._dump_metadata:
                dump_metadata(file_id, result.metadata)

            self._buffer.append(document_from_extraction(file_id, result))
            self.stats.filesystem_documents += 1

    def _extract_file(self, path: Path, file_id: str) -> ExtractionResult:
        try:
            with path.open("rb") as stream:
                return self._extractor.extract(stream, source_id=file_id)
        except OSError as exc:
            raise ExtractionError(file_id, f"open failed: {exc}") from exc

    def _ingest_relational(self, relational: RelationalSource) -> None:
        try:
            with relational.connect() as connection:
                with closing(query_rows(connection, relational.sql)) as rows:
                    for row_number, row in enumerate(rows, start=1):
                        try:
                            document = document_from_row(row)
                        except InvalidDocumentError as exc:
                            self.stats.skipped_rows += 1
                            print(f"[docindex] row skipped row={row_number} error={exc}", flush=True)
                            continue

                        self._buffer.append(document)
                        self.stats.relational_documents += 1
        except SQLAlchemyError as exc:
            self.stats.relational_error = str(exc)
            print(f"[docindex] relational phase aborted error={exc}", flush=True)
