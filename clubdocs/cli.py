"""
clubdocs CLI — Database bootstrap, server and maintenance commands.

Commands:
- clubdocs init-db       — Create tables on the configured database
- clubdocs serve         — Run the HTTP API under uvicorn
- clubdocs recompute     — Re-derive every derived document status of a club
- clubdocs export        — Export documents of a club as CSV or JSON
- clubdocs cleanup-logs  — Compress / delete structured log files past retention
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from sqlalchemy import select

from clubdocs.engine.config import ClubDocsConfig, load_config
from clubdocs.engine.errors import ClubDocsError

logger = logging.getLogger("clubdocs.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="clubdocs",
        description="clubdocs — Club document assignment & review workflow",
    )
    parser.add_argument(
        "--config", default=None, help="Path to clubdocs.yaml (default: auto-discover)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind host (default: api.host)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: api.port)")
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    recompute_parser = subparsers.add_parser("recompute", help="Re-derive document statuses")
    recompute_parser.add_argument("--club-id", type=int, required=True, help="Club to repair")

    export_parser = subparsers.add_parser("export", help="Export documents")
    export_parser.add_argument("--club-id", type=int, required=True)
    export_parser.add_argument("--user-id", type=int, required=True, help="Leader or admin running the export")
    export_parser.add_argument("--ids", type=int, nargs="*", help="Document ids (default: all in club)")
    export_parser.add_argument("--format", choices=["csv", "json"], default="csv")
    export_parser.add_argument("--output", "-o", help="Write to file instead of stdout")

    subparsers.add_parser("cleanup-logs", help="Apply log retention")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except ClubDocsError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 1
    _init_stdlib_logging(config)

    handlers = {
        "init-db": cmd_init_db,
        "serve": cmd_serve,
        "recompute": cmd_recompute,
        "export": cmd_export,
        "cleanup-logs": cmd_cleanup_logs,
    }
    try:
        return handlers[args.command](args, config)
    except ClubDocsError as e:
        print(f"[ERROR] {e.kind}: {e.message}", file=sys.stderr)
        return 1


def _init_stdlib_logging(config: ClubDocsConfig) -> None:
    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _init_structured_logging(config: ClubDocsConfig) -> None:
    from clubdocs.engine.logging import init_logging

    q = config.logging.async_queue
    init_logging(
        log_dir=config.logging.directory,
        flush_interval_ms=q.flush_interval_ms,
        flush_batch_size=q.flush_batch_size,
        max_queue_size=q.max_queue_size,
        level=config.logging.level,
    )


def _init_database(config: ClubDocsConfig, create_tables: bool = False):
    from clubdocs.db.session import init_db

    db = config.database
    return init_db(
        db.url,
        create_tables=create_tables,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
        pool_pre_ping=db.pool_pre_ping,
        echo=db.echo,
    )


def cmd_init_db(args: argparse.Namespace, config: ClubDocsConfig) -> int:
    """Create all tables (idempotent)."""
    from clubdocs.engine.logging import log, log_system_event, shutdown_logging

    _init_structured_logging(config)
    try:
        _init_database(config, create_tables=True)
        print(f"[OK] Tables ready on {config.database.url.split('@')[-1]}")
        log(log_system_event("database_initialized", details={"environment": config.environment}))
    finally:
        shutdown_logging()
    return 0


def cmd_serve(args: argparse.Namespace, config: ClubDocsConfig) -> int:
    """Start uvicorn with the app factory."""
    import uvicorn

    from clubdocs.api.app import create_app
    from clubdocs.engine.logging import log, log_system_event, shutdown_logging

    _init_structured_logging(config)
    host = args.host or config.api.host
    port = args.port or config.api.port
    log(log_system_event("server_starting", details={"host": host, "port": port}))
    print(f"Starting clubdocs API on http://{host}:{port}")
    try:
        if args.reload:
            uvicorn.run("clubdocs.api.app:create_app", factory=True, host=host, port=port, reload=True)
        else:
            uvicorn.run(create_app(), host=host, port=port)
    finally:
        log(log_system_event("server_stopped"))
        shutdown_logging()
    return 0


def cmd_recompute(args: argparse.Namespace, config: ClubDocsConfig) -> int:
    """
    Repair tool: re-derive the status of every document in a club whose
    status is not a manual override.
    """
    from clubdocs.db.models import SmartDocument
    from clubdocs.db.session import session_scope
    from clubdocs.documents.models import StatusSource
    from clubdocs.documents.status import recompute_document_status
    from clubdocs.engine.logging import log, log_system_event, shutdown_logging

    _init_structured_logging(config)
    factory = _init_database(config)
    fixed = 0
    try:
        with session_scope(factory) as session:
            ids = session.execute(
                select(SmartDocument.id).where(
                    SmartDocument.club_id == args.club_id,
                    SmartDocument.status_source == StatusSource.DERIVED.value,
                ).order_by(SmartDocument.id)
            ).scalars().all()
            for document_id in ids:
                result = recompute_document_status(
                    session, document_id,
                    max_attempts=config.workflow.max_recompute_attempts,
                )
                if result.written:
                    fixed += 1
                    print(f"  document {document_id}: {result.old_status} → {result.new_status}")
        print(f"[OK] Checked {len(ids)} documents in club {args.club_id}, corrected {fixed}")
        log(log_system_event(
            "status_recompute_run",
            details={"club_id": args.club_id, "checked": len(ids), "corrected": fixed},
        ))
    finally:
        shutdown_logging()
    return 0


def cmd_export(args: argparse.Namespace, config: ClubDocsConfig) -> int:
    """Export through the same guarded bulk path the API uses."""
    from clubdocs.api.dependencies import build_container
    from clubdocs.db.models import SmartDocument
    from clubdocs.db.session import session_scope
    from clubdocs.documents.models import BulkExportRequest, ExportFormat
    from clubdocs.documents.roles import load_actor

    factory = _init_database(config)
    container = build_container(config, session_factory=factory)
    with session_scope(factory) as session:
        actor = load_actor(session, args.user_id)
        ids = args.ids or session.execute(
            select(SmartDocument.id).where(SmartDocument.club_id == args.club_id)
        ).scalars().all()
    if not ids:
        print(f"[INFO] Club {args.club_id} has no documents", file=sys.stderr)
        return 0

    result = container.bulk.bulk_export(
        actor, args.club_id,
        BulkExportRequest(document_ids=list(ids), format=ExportFormat(args.format)),
    )
    if args.output:
        Path(args.output).write_text(result.content, encoding="utf-8", newline="")
        print(f"[OK] Wrote {result.count} documents to {args.output}")
    else:
        sys.stdout.write(result.content)
    return 0


def cmd_cleanup_logs(args: argparse.Namespace, config: ClubDocsConfig) -> int:
    from clubdocs.engine.logging import LogRetentionManager

    manager = LogRetentionManager(
        log_dir=config.logging.directory,
        retention_days={
            "execution": config.logging.retention.execution_days,
            "security": config.logging.retention.security_days,
        },
        compress_after_days=config.logging.compress_after_days,
    )
    result = manager.cleanup()
    print(f"[OK] Log cleanup: {result['compressed']} compressed, {result['deleted']} deleted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
