from __future__ import annotations

import argparse
from pathlib import Path
import sys

from docindex.config import EXTRACTORS, FLUSH_RETRY_MODES, SOLR_MODES, Settings, get_settings
from docindex.db import create_source_engine, relational_connection
from docindex.services.pipeline import (
    BatchBuffer,
    IngestionRun,
    RelationalSource,
    RetryPolicy,
    RunStatistics,
)
from docindex.services.pipeline.extractor import Extractor, PlainTextExtractor, TikaExtractor
from docindex.services.pipeline.index_client import IndexClient, build_index_client


def _build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docindex-ingest",
        description="Extract files and SQL rows and index them into Solr in batches",
    )
    parser.add_argument(
        "--source-dir",
        default=settings.source_dir,
        help="Root directory walked recursively for files to extract",
    )
    parser.add_argument(
        "--solr-url",
        action="append",
        default=None,
        help="Solr base URL; repeat for several SolrCloud nodes",
    )
    parser.add_argument(
        "--collection",
        default=settings.solr_collection,
        help="Solr collection (core) receiving the documents",
    )
    parser.add_argument(
        "--solr-mode",
        choices=sorted(SOLR_MODES),
        default=None,
        help="standalone for a single node, cloud to fail over across nodes",
    )
    parser.add_argument(
        "--extractor",
        choices=sorted(EXTRACTORS),
        default=settings.extractor,
        help="Content extraction engine",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy URL of the relational source",
    )
    parser.add_argument(
        "--sql",
        default=settings.sql_query,
        help="Query returning id, title and text columns",
    )
    parser.add_argument(
        "--skip-sql",
        action="store_true",
        default=not settings.sql_enabled,
        help="Do not ingest rows from the relational source",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.batch_size,
        help="Documents buffered before a batch is sent to Solr",
    )
    parser.add_argument(
        "--commit-within-ms",
        type=int,
        default=settings.commit_within_ms,
        help="Solr commitWithin bound for every batch",
    )
    parser.add_argument(
        "--flush-retry",
        choices=sorted(FLUSH_RETRY_MODES),
        default=settings.flush_retry,
        help="Handling of rejected batches: none (log and discard), backoff, abort",
    )
    parser.add_argument(
        "--dump-metadata",
        action="store_true",
        default=settings.dump_metadata,
        help="Print all extracted metadata for every file",
    )
    return parser


def build_extractor(name: str, settings: Settings) -> Extractor:
    if name == "tika":
        return TikaExtractor(
            base_url=settings.tika_url,
            timeout_seconds=settings.tika_timeout_seconds,
        )
    if name == "plain":
        return PlainTextExtractor()
    raise ValueError(f"Unknown extractor: {name}")


def run_ingestion(
    *,
    source_dir: Path,
    index_client: IndexClient,
    extractor: Extractor,
    relational: RelationalSource | None,
    batch_size: int,
    commit_within_ms: int,
    retry: RetryPolicy,
    dump_metadata: bool = False,
) -> tuple[RunStatistics, BatchBuffer]:
    if not source_dir.exists():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")
    if not source_dir.is_dir():
        raise NotADirectoryError(f"Source path is not a directory: {source_dir}")

    index_client.ping()

    buffer = BatchBuffer(
        index_client,
        threshold=batch_size,
        commit_within_ms=commit_within_ms,
        retry=retry,
    )
    run = IngestionRun(
        buffer,
        extractor=extractor,
        root_dir=source_dir,
        relational=relational,
        dump_metadata=dump_metadata,
    )
    return run.run(), buffer


def main(argv: list[str] | None = None) -> None:
    settings = get_settings()
    parser = _build_parser(settings)
    args = parser.parse_args(argv)

    try:
        solr_urls = tuple(args.solr_url) if args.solr_url else settings.solr_urls
        solr_mode = args.solr_mode or ("cloud" if len(solr_urls) > 1 else settings.solr_mode)
        index_client = build_index_client(
            mode=solr_mode,
            urls=solr_urls,
            collection=args.collection,
            timeout_seconds=settings.solr_timeout_seconds,
            connect_timeout_seconds=settings.solr_connect_timeout_seconds,
        )

        relational = None
        if not args.skip_sql:
            engine = create_source_engine(args.database_url, echo=settings.db_echo)
            relational = RelationalSource(
                connect=lambda: relational_connection(engine),
                sql=args.sql,
            )

        stats, buffer = run_ingestion(
            source_dir=Path(args.source_dir),
            index_client=index_client,
            extractor=build_extractor(args.extractor, settings),
            relational=relational,
            batch_size=args.batch_size,
            commit_within_ms=args.commit_within_ms,
            retry=RetryPolicy(
                mode=args.flush_retry,
                max_attempts=settings.flush_retry_attempts,
                base_seconds=settings.flush_retry_base_seconds,
                max_seconds=settings.flush_retry_max_seconds,
            ),
            dump_metadata=args.dump_metadata,
        )
    except Exception as exc:
        print(f"[docindex-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        f"Total Time Taken: {stats.elapsed_ms} milliseconds to index "
        f"{stats.relational_documents} SQL rows and {stats.filesystem_documents} documents",
        flush=True,
    )
    print(
        "[docindex-ingest] completed "
        f"filesystem_documents={stats.filesystem_documents} "
        f"relational_documents={stats.relational_documents} "
        f"failed_files={stats.failed_files} "
        f"skipped_rows={stats.skipped_rows} "
        f"batches={buffer.flush_count} "
        f"failed_batches={buffer.failed_flush_count} "
        f"elapsed_ms={stats.elapsed_ms}",
        flush=True,
    )


if __name__ == "__main__":
    main()
