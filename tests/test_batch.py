from collections.abc import Sequence

import pytest

from docindex.config import FLUSH_RETRY_MODES
from docindex.services.pipeline import batch as batch_module
from docindex.services.pipeline.batch import BatchBuffer, IndexFlushError, RetryPolicy
from docindex.services.pipeline.index_client import IndexClientError
from docindex.services.pipeline.types import Document, UpdateResponse


class FakeIndexClient:
    def __init__(self, statuses: Sequence[int | Exception] = ()) -> None:
        self._statuses = list(statuses)
        self.add_calls: list[tuple[list[str], int]] = []
        self.commit_calls = 0

    def add(self, documents: Sequence[Document], commit_within_ms: int) -> UpdateResponse:
        self.add_calls.append(([document.doc_id for document in documents], commit_within_ms))
        outcome = self._statuses.pop(0) if self._statuses else 0
        if isinstance(outcome, Exception):
            raise outcome
        return UpdateResponse(status=outcome)

    def commit(self) -> None:
        self.commit_calls += 1

    def ping(self) -> None:
        return None


def _doc(index: int) -> Document:
    return Document(doc_id=f"doc-{index}", fields={"text": f"body {index}"})


def test_pending_never_reaches_threshold_after_append() -> None:
    client = FakeIndexClient()
    buffer = BatchBuffer(client, threshold=3, commit_within_ms=300000)

    for index in range(10):
        buffer.append(_doc(index))
        assert buffer.pending < buffer.threshold

    assert [ids for ids, _ in client.add_calls] == [
        ["doc-0", "doc-1", "doc-2"],
        ["doc-3", "doc-4", "doc-5"],
        ["doc-6", "doc-7", "doc-8"],
    ]
    assert all(commit_within == 300000 for _, commit_within in client.add_calls)
    assert buffer.pending == 1


def test_flush_of_empty_buffer_issues_no_add_call() -> None:
    client = FakeIndexClient()
    buffer = BatchBuffer(client, threshold=5, commit_within_ms=1000)

    buffer.flush()

    assert client.add_calls == []
    assert buffer.flush_count == 0


def test_finalize_flushes_leftovers_then_commits_once() -> None:
    client = FakeIndexClient()
    buffer = BatchBuffer(client, threshold=5, commit_within_ms=1000)
    buffer.append(_doc(1))
    buffer.append(_doc(2))

    buffer.finalize()

    assert [ids for ids, _ in client.add_calls] == [["doc-1", "doc-2"]]
    assert client.commit_calls == 1
    assert buffer.pending == 0


def test_finalize_commits_even_when_nothing_is_pending() -> None:
    client = FakeIndexClient()
    buffer = BatchBuffer(client, threshold=2, commit_within_ms=1000)

    buffer.finalize()

    assert client.add_calls == []
    assert client.commit_calls == 1


def test_finalize_is_single_use() -> None:
    buffer = BatchBuffer(FakeIndexClient(), threshold=2, commit_within_ms=1000)
    buffer.finalize()

    with pytest.raises(RuntimeError, match="already finalized"):
        buffer.finalize()
    with pytest.raises(RuntimeError, match="finalized"):
        buffer.append(_doc(1))


def test_rejected_batch_is_logged_discarded_and_ingestion_continues(capsys) -> None:
    client = FakeIndexClient(statuses=[500, 0])
    buffer = BatchBuffer(client, threshold=2, commit_within_ms=1000)

    for index in range(4):
        buffer.append(_doc(index))

    output = capsys.readouterr().out
    assert "flush failed status=500 documents=2 first_id=doc-0" in output
    assert len(client.add_calls) == 2
    assert buffer.pending == 0
    assert buffer.failed_flush_count == 1
    assert buffer.flushed_documents == 2


def test_transport_error_is_treated_as_failed_flush(capsys) -> None:
    client = FakeIndexClient(statuses=[IndexClientError("No Solr node reachable")])
    buffer = BatchBuffer(client, threshold=1, commit_within_ms=1000)

    buffer.append(_doc(1))

    assert "error=No Solr node reachable" in capsys.readouterr().out
    assert buffer.pending == 0
    assert buffer.failed_flush_count == 1


def test_backoff_retries_the_same_batch(monkeypatch: pytest.MonkeyPatch) -> None:
    delays: list[float] = []
    monkeypatch.setattr(batch_module, "sleep", delays.append)
    monkeypatch.setattr(batch_module, "random", lambda: 0.0)
    client = FakeIndexClient(statuses=[503, 503, 0])
    buffer = BatchBuffer(
        client,
        threshold=2,
        commit_within_ms=1000,
        retry=RetryPolicy(mode="backoff", max_attempts=3, base_seconds=0.5, max_seconds=10),
    )

    buffer.append(_doc(1))
    buffer.append(_doc(2))

    assert [ids for ids, _ in client.add_calls] == [["doc-1", "doc-2"]] * 3
    assert delays == [0.5, 1.0]
    assert buffer.failed_flush_count == 0
    assert buffer.flushed_documents == 2


def test_backoff_gives_up_after_max_attempts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(batch_module, "sleep", lambda _: None)
    client = FakeIndexClient(statuses=[503, 503])
    buffer = BatchBuffer(
        client,
        threshold=1,
        commit_within_ms=1000,
        retry=RetryPolicy(mode="backoff", max_attempts=2, base_seconds=0.1),
    )

    buffer.append(_doc(1))

    assert len(client.add_calls) == 2
    assert buffer.failed_flush_count == 1
    assert buffer.pending == 0


def test_abort_policy_raises_after_clearing_buffer() -> None:
    client = FakeIndexClient(statuses=[400])
    buffer = BatchBuffer(client, threshold=1, commit_within_ms=1000, retry=RetryPolicy(mode="abort"))

    with pytest.raises(IndexFlushError, match="status=400"):
        buffer.append(_doc(1))

    assert buffer.pending == 0
    assert len(client.add_calls) == 1


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError, match="threshold"):
        BatchBuffer(FakeIndexClient(), threshold=0, commit_within_ms=1000)
    with pytest.raises(ValueError, match="retry mode"):
        RetryPolicy(mode="forever")


class _CommitFailingClient(FakeIndexClient):
    def commit(self) -> None:
        self.commit_calls += 1
        raise IndexClientError("Solr commit failed with status 500")


def test_finalize_surfaces_flush_error_when_commit_also_fails() -> None:
    client = _CommitFailingClient(statuses=[400])
    buffer = BatchBuffer(client, threshold=5, commit_within_ms=1000, retry=RetryPolicy(mode="abort"))
    buffer.append(_doc(1))

    with pytest.raises(IndexFlushError, match="status=400") as exc_info:
        buffer.finalize()

    assert client.commit_calls == 1
    assert isinstance(exc_info.value.__cause__, IndexClientError)


def test_finalize_commits_after_aborted_final_flush() -> None:
    client = FakeIndexClient(statuses=[400])
    buffer = BatchBuffer(client, threshold=5, commit_within_ms=1000, retry=RetryPolicy(mode="abort"))
    buffer.append(_doc(1))

    with pytest.raises(IndexFlushError):
        buffer.finalize()

    assert client.commit_calls == 1


def test_retry_modes_match_configuration_choices() -> None:
    for mode in FLUSH_RETRY_MODES:
        assert RetryPolicy(mode=mode).mode == mode
