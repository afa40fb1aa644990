from __future__ import annotations

from collections.abc import Iterator
from typing import Any, BinaryIO, Protocol

import httpx

from docindex.services.pipeline.types import ExtractionResult

TIKA_CONTENT_KEY = "X-TIKA:content"
SNIFF_BYTES = 8192
STREAM_CHUNK_BYTES = 64 * 1024


class ExtractionError(RuntimeError):
    def __init__(self, source_id: str, reason: str) -> None:
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class Extractor(Protocol):
    def extract(self, stream: BinaryIO, *, source_id: str) -> ExtractionResult: ...


def _read_all(stream: BinaryIO, source_id: str) -> bytes:
    try:
        return stream.read()
    except OSError as exc:
        raise ExtractionError(source_id, f"read failed: {exc}") from exc


def _iter_chunks(stream: BinaryIO) -> Iterator[bytes]:
    while True:
        chunk = stream.read(STREAM_CHUNK_BYTES)
        if not chunk:
            return
        yield chunk


def _metadata_value(value: Any) -> str | None:
    # Tika reports multi-valued keys as lists; keep the first value like Metadata.get does.
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value)


class TikaExtractor:
    """Extract text and metadata through a Tika server's recursive metadata endpoint."""

    def __init__(self, *, base_url: str, timeout_seconds: float = 60.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    def extract(self, stream: BinaryIO, *, source_id: str) -> ExtractionResult:
        try:
            response = httpx.put(
                f"{self._base_url}/rmeta/text",
                content=_iter_chunks(stream),
                headers={"Accept": "application/json"},
                timeout=self._timeout_seconds,
            )
        except OSError as exc:
            raise ExtractionError(source_id, f"read failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(source_id, f"tika request failed: {exc}") from exc

        if response.status_code == 415:
            raise ExtractionError(source_id, "unsupported media type")
        if response.status_code == 422:
            raise ExtractionError(source_id, "unprocessable content")
        if response.status_code >= 400:
            raise ExtractionError(source_id, f"tika returned HTTP {response.status_code}")

        try:
            records = response.json()
        except ValueError as exc:
            raise ExtractionError(source_id, "invalid tika payload: not JSON") from exc

        if not isinstance(records, list) or not records or not isinstance(records[0], dict):
            raise ExtractionError(source_id, "invalid tika payload: missing container record")

        container: dict[str, Any] = records[0]
        text = container.get(TIKA_CONTENT_KEY)
        metadata: dict[str, str] = {}
        for key, value in container.items():
            if key == TIKA_CONTENT_KEY:
                continue
            normalized = _metadata_value(value)
            if normalized is not None:
                metadata[key] = normalized

        return ExtractionResult(
            text=text.strip() if isinstance(text, str) else "",
            metadata=metadata,
        )


class PlainTextExtractor:
    """Offline extractor: accepts anything that sniffs as text, rejects binary content."""

    def extract(self, stream: BinaryIO, *, source_id: str) -> ExtractionResult:
        payload = _read_all(stream, source_id)
        if b"\x00" in payload[:SNIFF_BYTES]:
            raise ExtractionError(source_id, "binary content is not supported by the plain extractor")

        try:
            text = payload.decode("utf-8")
            charset = "UTF-8"
        except UnicodeDecodeError:
            text = payload.decode("latin-1")
            charset = "ISO-8859-1"

        return ExtractionResult(
            text=text.strip(),
            metadata={"Content-Type": f"text/plain; charset={charset}"},
        )
