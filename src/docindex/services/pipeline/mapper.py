from __future__ import annotations

from docindex.services.pipeline.types import Document, ExtractionResult, SourceRow

# Only a curated subset of metadata is indexed; Tika has used all of these names for the author.
AUTHOR_KEYS = ("Author", "meta:author", "dc:creator")
ROW_FIELDS = ("title", "text")


def _author(metadata: dict[str, str]) -> str | None:
    for key in AUTHOR_KEYS:
        value = metadata.get(key)
        if value:
            return value
    return None


def document_from_extraction(file_id: str, result: ExtractionResult) -> Document:
    fields: dict[str, str] = {}
    author = _author(result.metadata)
    if author is not None:
        fields["author"] = author
    fields["text"] = result.text
    return Document(doc_id=file_id, fields=fields)


def document_from_row(row: SourceRow) -> Document:
    raw_id = row["id"]
    fields = {name: str(row[name]) for name in ROW_FIELDS if row[name] is not None}
    return Document(doc_id="" if raw_id is None else str(raw_id), fields=fields)
