from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from component_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from component_import.db.repository import PostgresComponentStore, StorageError
from component_import.excel.reader import UnreadableFileError, read_table
from component_import.logging.error_log import ErrorLogBuffer
from component_import.logging.init import log_summary, setup_logging
from component_import.models.config_models import (
    DatabaseConfig,
    DuplicatePolicy,
    ImportConfig,
    ImportOptions,
)
from component_import.models.import_run import RunStatus
from component_import.services.committer import STORAGE_UNAVAILABLE
from component_import.services.orchestrator import (
    MISSING_REQUIRED_COLUMN,
    normalizer_for,
    preview_import,
    run_import,
)
from component_import.services.progress import ChunkProgressTracker
from component_import.services.summary import render_preview_line, render_summary_line

"""CLI entrypoint.

    python -m component_import.cli --project P --file components.xlsx [--preview]

Exit codes:
- 0: run completed (or preview succeeded)
- 2: run finished partial or failed (some or all chunks rolled back)
- 1: fatal (config, unreadable file, missing required columns, database unavailable)
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Connection string, resolved in this order:

    1. variables from `.env` (loaded with override in main())
    2. DATABASE_URL / PGDSN for a complete DSN
    3. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    4. the database section of the YAML config for anything still missing
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """psycopg2 connection with explicit transaction boundaries (autocommit off)."""
    conn = psycopg2.connect(_resolve_dsn(cfg.database))
    try:
        conn.autocommit = False
        yield conn
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; override=True lets .env win over the environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="component_import",
        description="Spreadsheet -> component instances importer",
    )
    p.add_argument("--project", help="Project id the components belong to")
    p.add_argument("--file", type=Path, help="Spreadsheet (.xlsx / .xlsm) or .csv to import")
    p.add_argument("--preview", action="store_true", help="Analyse the file without writing")
    p.add_argument(
        "--policy",
        choices=[policy.value for policy in DuplicatePolicy],
        help="Duplicate handling (overrides duplicate_policy in the config)",
    )
    p.add_argument("--chunk-size", type=int, help="Instances per transaction (overrides config)")
    p.add_argument("--config", type=Path, help=f"Config file (default {DEFAULT_CONFIG_PATH})")
    p.add_argument("--init-db", action="store_true", help="Create the tables before importing")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = p.parse_args(argv)
    if args.file is None and not args.init_db:
        p.error("--file is required unless only --init-db is given")
    if args.file is not None and not args.preview and not args.project:
        p.error("--project is required to import")
    return args


def _load_cfg(args: argparse.Namespace, logger: Any) -> ImportConfig:
    if args.config is None and not DEFAULT_CONFIG_PATH.exists():
        logger.debug("no %s, using defaults", DEFAULT_CONFIG_PATH)
        return ImportConfig(options=ImportOptions(), database=DatabaseConfig())
    return load_config(args.config or DEFAULT_CONFIG_PATH)


def _options_from(args: argparse.Namespace, cfg: ImportConfig) -> ImportOptions:
    base = cfg.options
    return ImportOptions(
        chunk_size=args.chunk_size or base.chunk_size,
        chunk_timeout_seconds=base.chunk_timeout_seconds,
        duplicate_policy=DuplicatePolicy(args.policy) if args.policy else base.duplicate_policy,
    )


@contextmanager
def _cancel_on_interrupt(event: threading.Event) -> Iterator[None]:
    """First Ctrl-C stops the run after the current chunk; a second one aborts."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: Any) -> None:
        if event.is_set():
            raise KeyboardInterrupt
        event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def main(argv: list[str] | None = None) -> int:
    # only read the process arguments when none are given ([] means "no arguments")
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = _load_cfg(args, logger)
        options = _options_from(args, cfg)
    except (ConfigError, ValueError) as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    table = None
    if args.file is not None:
        try:
            table = read_table(args.file)
        except UnreadableFileError as e:
            logger.error(f"file: {e}")
            return EXIT_FATAL
        logger.info(f"{args.file.name}: {len(table.rows)} data rows, {len(table.headers)} columns")

    normalizer = normalizer_for(cfg, args.project)

    if args.preview and table is not None:
        preview = preview_import(
            table.headers,
            table.rows,
            normalizer=normalizer,
            policy=options.duplicate_policy,
            filename=args.file.name,
        )
        if preview.rejected:
            logger.error(f"missing required columns: {', '.join(preview.missing_columns)}")
            return EXIT_FATAL
        mapped = {k: v for k, v in preview.column_mapping.items() if v is not None}
        logger.info(f"columns: {mapped}")
        logger.info(f"types: {preview.type_counts}")
        if preview.unknown_types:
            logger.warning(f"unknown types: {', '.join(preview.unknown_types)}")
        for record in preview.errors:
            logger.warning(f"row {record.row}: {record.error_type} {record.message}")
        log_summary(render_preview_line(preview)[len("SUMMARY "):])
        return EXIT_SUCCESS_ALL

    try:
        with _db_connection(cfg) as conn:
            store = PostgresComponentStore(conn)
            if args.init_db:
                with store.transaction() as cur:
                    store.apply_schema(cur)
                logger.info("schema applied")
                if table is None:
                    return EXIT_SUCCESS_ALL

            cancel = threading.Event()
            with _cancel_on_interrupt(cancel), ChunkProgressTracker(0) as progress:
                result = run_import(
                    store,
                    args.project,
                    table.headers,  # type: ignore[union-attr]
                    table.rows,  # type: ignore[union-attr]
                    options=options,
                    normalizer=normalizer,
                    filename=args.file.name,
                    error_log=ErrorLogBuffer(cfg.error_log_dir),
                    cancel_event=cancel,
                    progress_callback=progress,
                )
    except (psycopg2.Error, StorageError) as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL

    for record in result.errors:
        logger.warning(f"row {record.row}: {record.error_type} {record.message}")
    if result.unknown_types:
        logger.warning(f"unknown types: {', '.join(result.unknown_types)}")
    log_summary(render_summary_line(result)[len("SUMMARY "):])

    error_types = {e.error_type for e in result.errors}
    if MISSING_REQUIRED_COLUMN in error_types or STORAGE_UNAVAILABLE in error_types:
        return EXIT_FATAL
    if result.status is RunStatus.COMPLETED:
        return EXIT_SUCCESS_ALL
    return EXIT_PARTIAL_FAILURE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
