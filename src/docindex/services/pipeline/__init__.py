from docindex.services.pipeline.batch import BatchBuffer, IndexFlushError, RetryPolicy
from docindex.services.pipeline.orchestrator import IngestionRun, RelationalSource, RunState
from docindex.services.pipeline.types import Document, RunStatistics

__all__ = [
    "BatchBuffer",
    "Document",
    "IndexFlushError",
    "IngestionRun",
    "RelationalSource",
    "RetryPolicy",
    "RunState",
    "RunStatistics",
]
