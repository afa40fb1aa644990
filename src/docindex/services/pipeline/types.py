from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

SourceRow = Mapping[str, Any]


class InvalidDocumentError(ValueError):
    pass


@dataclass(frozen=True)
class Document:
    doc_id: str
    fields: Mapping[str, str]

    def __post_init__(self) -> None:
        if not self.doc_id:
            raise InvalidDocumentError("document id must not be empty")
        if "text" not in self.fields:
            raise InvalidDocumentError(f"document {self.doc_id} has no text field")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def to_solr(self) -> dict[str, str]:
        return {"id": self.doc_id, **self.fields}


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WalkFailure:
    path: Path
    error: OSError


@dataclass(frozen=True)
class UpdateResponse:
    status: int
    qtime_ms: int = 0


@dataclass
class RunStatistics:
    filesystem_documents: int = 0
    relational_documents: int = 0
    failed_files: int = 0
    walk_failures: int = 0
    skipped_rows: int = 0
    relational_error: str | None = None
    elapsed_ms: int = 0
