"""
clubdocs Logging — Structured JSON-lines audit files behind an async queue.

Implements:
- FileLogger: one file per object type, category and day
- AsyncLogQueue: non-blocking push, background flush (interval or batch size)
- Entry builders for workflow, status, bulk, security, notification, API events
- LogRetentionManager: gzip then delete old files per category

Layout: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("clubdocs.engine.logging")

OBJECT_TYPE_CATEGORIES = {
    "documents": ["execution", "security"],
    "assignments": ["execution", "security"],
    "bulk": ["execution", "security"],
    "notifications": ["execution"],
    "api": ["execution", "security"],
    "system": ["execution", "security"],
}

DEFAULT_RETENTION = {
    "execution": 90,
    "security": 365,
}


class LogEntry:
    """A structured log entry bound for one object_type/category file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Appends entries to daily JSONL files. Thread-safe, one lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def path_for(self, object_type: str, category: str, day: Optional[date] = None) -> Path:
        day = day or date.today()
        return self._log_dir / object_type / category / f"{day.isoformat()}.jsonl"

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write entries, opening each target file once per batch."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[str(self.path_for(entry.object_type, entry.category))].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def read(self, object_type: str, category: str, day: Optional[date] = None) -> List[Dict[str, Any]]:
        """Read back one day's entries (plain or gzipped). Used by the CLI and tests."""
        path = self.path_for(object_type, category, day)
        gz_path = path.with_suffix(".jsonl.gz")
        if path.exists():
            opener = open(path, "r", encoding="utf-8")
        elif gz_path.exists():
            opener = gzip.open(gz_path, "rt", encoding="utf-8")
        else:
            return []
        with opener as f:
            return [json.loads(line) for line in f if line.strip()]


class AsyncLogQueue:
    """
    In-memory queue drained by a daemon thread.

    The thread writes a batch whenever flush_batch_size entries are waiting
    or flush_interval_ms has elapsed, whichever comes first.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="clubdocs-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and write whatever is still queued."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        """Queue an entry without blocking. False when the queue is full."""
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if not batch:
                time.sleep(self._flush_interval)
                continue
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log flush error: {e}")

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval
        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    club_id: Optional[int] = None,
    user_id: Optional[Any] = None,
    request_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if club_id is not None:
        entry["club_id"] = club_id
    if user_id is not None:
        entry["user_id"] = user_id
    if request_id:
        entry["request_id"] = request_id
    entry.update(extra)
    return entry


def log_workflow_event(
    event: str,
    club_id: int,
    user_id: Any,
    document_id: int,
    member_id: Optional[int] = None,
    request_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Document or assignment mutation (created, updated, submitted, reviewed, deleted)."""
    data = _base_entry(
        event=event,
        level="INFO",
        club_id=club_id,
        user_id=user_id,
        request_id=request_id,
        document_id=document_id,
    )
    if member_id is not None:
        data["member_id"] = member_id
    if details:
        data["details"] = details
    object_type = "assignments" if event.startswith("assignment") else "documents"
    return LogEntry(object_type, "execution", data)


def log_status_change(
    document_id: int,
    club_id: int,
    old_status: Optional[str],
    new_status: str,
    source: str,
    version: int,
    request_id: Optional[str] = None,
) -> LogEntry:
    """Aggregate document status written (derived recompute or manual override)."""
    data = _base_entry(
        event="document_status_changed",
        level="INFO",
        club_id=club_id,
        request_id=request_id,
        document_id=document_id,
        old_status=old_status,
        new_status=new_status,
        source=source,
        version=version,
    )
    return LogEntry("documents", "execution", data)


def log_bulk_operation(
    operation: str,
    club_id: int,
    user_id: Any,
    requested_ids: List[int],
    success: bool,
    affected: int = 0,
    mismatch_count: Optional[int] = None,
    request_id: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event=f"bulk_{operation}",
        level="INFO" if success else "ERROR",
        club_id=club_id,
        user_id=user_id,
        request_id=request_id,
        requested_ids=requested_ids,
        success=success,
        affected=affected,
    )
    if mismatch_count is not None:
        data["mismatch_count"] = mismatch_count
    return LogEntry("bulk", "execution", data)


def log_security_event(
    event: str,
    object_type: str,
    operation: str,
    user_id: Any,
    club_id: Optional[int],
    effective_role: str,
    required_role: str,
    document_id: Optional[int] = None,
    request_id: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Denied operation. Routed to {object_type}/security."""
    data = _base_entry(
        event=event,
        level=level,
        club_id=club_id,
        user_id=user_id,
        request_id=request_id,
        operation=operation,
        effective_role=effective_role,
        required_role=required_role,
    )
    if document_id is not None:
        data["document_id"] = document_id
    target = object_type if "security" in OBJECT_TYPE_CATEGORIES.get(object_type, []) else "system"
    return LogEntry(target, "security", data)


def log_notification_failure(
    event_type: str,
    sink: str,
    document_id: int,
    club_id: int,
    error: str,
    member_id: Optional[int] = None,
) -> LogEntry:
    data = _base_entry(
        event="notification_failed",
        level="ERROR",
        club_id=club_id,
        notification_event=event_type,
        sink=sink,
        document_id=document_id,
        error=error,
    )
    if member_id is not None:
        data["member_id"] = member_id
    return LogEntry("notifications", "execution", data)


def log_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[Any] = None,
    request_id: Optional[str] = None,
    error_kind: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event="api_request",
        level="INFO" if status_code < 400 else "ERROR",
        user_id=user_id,
        request_id=request_id,
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )
    if error_kind:
        data["error_kind"] = error_kind
    return LogEntry("api", "execution", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Startup, shutdown, schema creation, repair runs."""
    data = _base_entry(event=event, level=level)
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Log Cleanup / Retention
# ---------------------------------------------------------------------------

class LogRetentionManager:
    """Compresses files older than compress_after_days, deletes past retention."""

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._log_dir = Path(log_dir)
        self._retention = retention_days or DEFAULT_RETENTION.copy()
        self._compress_after = compress_after_days

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """
        Returns:
            {"deleted": N, "compressed": M}
        """
        deleted = 0
        compressed = 0
        today = today or date.today()

        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                cat_dir = self._log_dir / obj_type / cat
                if not cat_dir.exists():
                    continue
                retention = self._retention.get(cat, DEFAULT_RETENTION["execution"])

                for file_path in sorted(cat_dir.iterdir()):
                    file_date = self._parse_file_date(file_path)
                    if not file_path.is_file() or file_date is None:
                        continue
                    age_days = (today - file_date).days
                    if age_days > retention:
                        file_path.unlink()
                        deleted += 1
                    elif age_days > self._compress_after and file_path.suffix == ".jsonl":
                        self._compress_file(file_path)
                        compressed += 1

        result = {"deleted": deleted, "compressed": compressed}
        logger.info(f"Log cleanup: {result}")
        return result

    @staticmethod
    def _parse_file_date(file_path: Path) -> Optional[date]:
        try:
            return date.fromisoformat(file_path.name.split(".")[0])
        except ValueError:
            return None

    @staticmethod
    def _compress_file(file_path: Path) -> None:
        gz_path = file_path.with_suffix(file_path.suffix + ".gz")
        try:
            with open(file_path, "rb") as f_in, gzip.open(gz_path, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
            file_path.unlink()
        except OSError as e:
            logger.error(f"Failed to compress {file_path}: {e}")
            if gz_path.exists():
                gz_path.unlink()


# ---------------------------------------------------------------------------
# Global Log Queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
    level: str = "INFO",
) -> AsyncLogQueue:
    """Start the global async queue and set the clubdocs stdlib logger level."""
    global _global_queue
    logging.getLogger("clubdocs").setLevel(level)
    if _global_queue is not None:
        _global_queue.stop()
    _global_queue = AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push to the global queue. Entries are dropped when logging is not initialized."""
    if _global_queue is None:
        logger.debug(f"Log queue not initialized, dropped {entry.object_type}/{entry.category} entry")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
