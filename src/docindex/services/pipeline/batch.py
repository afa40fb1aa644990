from __future__ import annotations

from dataclasses import dataclass
from random import random
from time import sleep

from docindex.config import FLUSH_RETRY_MODES
from docindex.services.pipeline.index_client import IndexClient, IndexClientError
from docindex.services.pipeline.types import Document


class IndexFlushError(RuntimeError):
    pass


@dataclass(frozen=True)
class RetryPolicy:
    """What to do with a batch the index rejected.

    ``none`` logs and discards, ``backoff`` retries with jittered exponential
    delays before discarding, ``abort`` discards and raises ``IndexFlushError``.
    """

    mode: str = "none"
    max_attempts: int = 3
    base_seconds: float = 1.0
    max_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.mode not in FLUSH_RETRY_MODES:
            raise ValueError(f"retry mode must be one of {sorted(FLUSH_RETRY_MODES)}, got {self.mode!r}")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @property
    def attempts(self) -> int:
        return self.max_attempts if self.mode == "backoff" else 1


class BatchBuffer:
    def __init__(
        self,
        client: IndexClient,
        *,
        threshold: int,
        commit_within_ms: int,
        retry: RetryPolicy | None = None,
    ) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        if commit_within_ms < 0:
            raise ValueError("commit_within_ms must be >= 0")

        self._client = client
        self._threshold = threshold
        self._commit_within_ms = commit_within_ms
        self._retry = retry or RetryPolicy()
        self._items: list[Document] = []
        self._finalized = False

        self.flush_count = 0
        self.failed_flush_count = 0
        self.flushed_documents = 0

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def pending(self) -> int:
        return len(self._items)

    def append(self, document: Document) -> None:
        if self._finalized:
            raise RuntimeError("cannot append to a finalized batch buffer")

        self._items.append(document)
        if len(self._items) >= self._threshold:
            self.flush()

    def flush(self) -> None:
        if not self._items:
            return

        batch = list(self._items)
        try:
            status, error = self._add_with_policy(batch)
        finally:
            # A batch is never re-sent once the add call(s) returned or raised.
            self._items.clear()

        self.flush_count += 1
        if status == 0:
            self.flushed_documents += len(batch)
            return

        self.failed_flush_count += 1
        detail = f"status={status}" if error is None else f"error={error}"
        print(
            f"[docindex] flush failed {detail} documents={len(batch)} "
            f"first_id={batch[0].doc_id} retry={self._retry.mode}",
            flush=True,
        )
        if self._retry.mode == "abort":
            raise IndexFlushError(
                f"index rejected batch of {len(batch)} documents ({detail})"
            )

    def finalize(self) -> None:
        if self._finalized:
            raise RuntimeError("batch buffer already finalized")
        self._finalized = True

        try:
            self.flush()
        except Exception as flush_error:
            # The flush failure wins; a failed commit becomes its cause.
            try:
                self._client.commit()
            except IndexClientError as commit_error:
                raise flush_error from commit_error
            raise

        self._client.commit()

    def _add_with_policy(self, batch: list[Document]) -> tuple[int, str | None]:
        delay = self._retry.base_seconds
        attempts = self._retry.attempts
        status = -1
        error: str | None = None

        for attempt in range(1, attempts + 1):
            try:
                status = self._client.add(batch, self._commit_within_ms).status
                error = None
            except IndexClientError as exc:
                status = -1
                error = str(exc)

            if status == 0 or attempt == attempts:
                break

            print(
                f"[docindex] flush attempt={attempt}/{attempts} failed "
                f"status={status}; retrying in {delay:.1f}s",
                flush=True,
            )
            sleep(delay + random() * 0.2 * delay)
            delay = min(delay * 2, self._retry.max_seconds)

        return status, error
